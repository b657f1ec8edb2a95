"""
Test Package Initialization

This package contains all unit tests for the shuttle voice session manager.

Test Structure:
- test_config.py: Configuration tests
- test_events.py: Event dispatcher tests
- test_session_queue.py: Session queue and async iterator tests
- test_tool_bridge.py: Tool input parsing and knowledge base lookup tests
- test_knowledge_base.py: Bedrock knowledge base client tests
- test_stream_session.py: Stream session and audio backpressure tests
- test_client.py: Orchestrator tests (response loop, close paths, shutdown)
- test_connection.py: WebSocket adapter and HTTP server tests
- fakes.py: In-memory transport and knowledge base

Run tests with:
    pytest tests/ -v
"""
