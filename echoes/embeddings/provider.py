"""
OpenAI embedding provider for Echoes
"""

from typing import List, Optional

from openai import AsyncOpenAI, APIConnectionError, APIStatusError, APITimeoutError, OpenAIError

from ..utils.exceptions import EmbeddingProviderError, InvalidInput
from ..utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_MODEL = "text-embedding-3-large"


class OpenAIEmbeddingProvider:
    """
    Turns free text into an embedding vector

    Args:
        api_key: OpenAI API key
        model: Embedding model name
        timeout: Request timeout in seconds
        client: Pre-built AsyncOpenAI client (tests inject a fake)
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        timeout: float = 30,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise EmbeddingProviderError("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def embed(self, text: str) -> List[float]:
        """
        Embed ``text`` with the configured model

        Raises:
            InvalidInput: Text is empty or whitespace only
            EmbeddingProviderError: The OpenAI call failed
        """
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Text is required for embedding")

        try:
            response = await self.client.embeddings.create(model=self.model, input=text.strip())
        except APIStatusError as e:
            raise EmbeddingProviderError(
                f"OpenAI embedding request failed with HTTP {e.status_code}",
                status=e.status_code,
                body=e.message,
            ) from e
        except (APITimeoutError, APIConnectionError) as e:
            raise EmbeddingProviderError(f"OpenAI embedding request failed: {e}") from e
        except OpenAIError as e:
            raise EmbeddingProviderError(f"OpenAI embedding error: {e}") from e

        embedding = list(response.data[0].embedding)
        logger.debug(f"Embedded {len(text)} chars into {len(embedding)} dimensions")
        return embedding
