"""
Bidirectional Model Stream Module

Duplex transport to the speech-to-speech model (see shuttle_voice.core.duplex
for the chunk contract).

- BedrockBidirectionalStream: Amazon Bedrock ``InvokeModelWithBidirectionalStream``
  via the experimental ``aws_sdk_bedrock_runtime`` client, signed with
  credentials from the default boto3 chain.
"""

import asyncio
from typing import Any, AsyncIterable, AsyncIterator, Dict, Optional

import boto3
from aws_sdk_bedrock_runtime.client import (
    BedrockRuntimeClient,
    InvokeModelWithBidirectionalStreamOperationInput,
)
from aws_sdk_bedrock_runtime.config import Config, HTTPAuthSchemeResolver, SigV4AuthScheme
from aws_sdk_bedrock_runtime.models import (
    BidirectionalInputPayloadPart,
    InternalServerException,
    InvokeModelWithBidirectionalStreamInputChunk,
    ModelStreamErrorException,
)
from smithy_aws_core.identity import AWSCredentialsIdentity
from smithy_core.aio.interfaces.identity import IdentityResolver

from shuttle_voice.config import AWSConfig, settings
from shuttle_voice.core.duplex import DuplexStream
from shuttle_voice.logger import get_logger

logger = get_logger(__name__)


class Boto3CredentialsResolver(IdentityResolver):  # type: ignore[misc]
    """Resolve signing credentials through the default boto3 session chain."""

    def __init__(self) -> None:
        self._session = boto3.Session()

    async def get_identity(self, **kwargs: Any) -> AWSCredentialsIdentity:
        credentials = self._session.get_credentials()
        if not credentials:
            raise ValueError("Unable to load AWS credentials")

        frozen = credentials.get_frozen_credentials()
        return AWSCredentialsIdentity(
            access_key_id=frozen.access_key,
            secret_access_key=frozen.secret_key,
            session_token=frozen.token or None,
        )


class BedrockBidirectionalStream(DuplexStream):
    """
    Bedrock bidirectional streaming transport.

    One background task pumps the request body into the stream's input side
    while ``invoke`` yields decoded output chunks.
    """

    def __init__(self, aws_config: Optional[AWSConfig] = None):
        self._aws = aws_config or settings.aws
        self._region = self._aws.region
        self._client: Optional[BedrockRuntimeClient] = None

    def _ensure_client(self) -> BedrockRuntimeClient:
        if self._client is None:
            config = Config(
                endpoint_uri=self._aws.endpoint_uri,
                region=self._region,
                aws_credentials_identity_resolver=Boto3CredentialsResolver(),
                http_auth_scheme_resolver=HTTPAuthSchemeResolver(),
                http_auth_schemes={"aws.auth#sigv4": SigV4AuthScheme()},
            )
            self._client = BedrockRuntimeClient(config=config)
            logger.info(f"Bedrock runtime client initialized for region {self._region}")
        return self._client

    @staticmethod
    async def _pump_input(stream: Any, body: AsyncIterable[Dict[str, Any]]) -> None:
        """Forward every outbound chunk, then close the input side."""
        try:
            async for part in body:
                await stream.input_stream.send(
                    InvokeModelWithBidirectionalStreamInputChunk(
                        value=BidirectionalInputPayloadPart(bytes_=part["chunk"]["bytes"])
                    )
                )
        finally:
            try:
                await stream.input_stream.close()
            except Exception as e:
                logger.debug(f"Error closing input stream: {e}")

    async def invoke(
        self,
        model_id: str,
        body: AsyncIterable[Dict[str, Any]],
    ) -> AsyncIterator[Dict[str, Any]]:
        client = self._ensure_client()
        stream = await client.invoke_model_with_bidirectional_stream(
            InvokeModelWithBidirectionalStreamOperationInput(model_id=model_id)
        )
        pump_task = asyncio.create_task(self._pump_input(stream, body))

        try:
            _, output_stream = await stream.await_output()
            while True:
                try:
                    result = await output_stream.receive()
                except ModelStreamErrorException as e:
                    yield {"modelStreamErrorException": {"message": getattr(e, "message", str(e))}}
                    break
                except InternalServerException as e:
                    yield {"internalServerException": {"message": getattr(e, "message", str(e))}}
                    break

                if result is None:
                    break

                data = getattr(getattr(result, "value", None), "bytes_", None)
                if data:
                    yield {"chunk": {"bytes": data}}
        finally:
            pump_task.cancel()
            try:
                await pump_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Input pump ended with error: {e}")
