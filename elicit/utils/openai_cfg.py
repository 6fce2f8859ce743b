from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam

from elicit.utils.env_cfg import load_openai_env

PROMPT_DIR = Path(__file__).parent / "prompts"


@dataclass
class OpenAIPipeline:
    """
    Async chat completions against an OpenAI-compatible API.
    """

    client: AsyncOpenAI = field(init=False)
    model_id: str = field(init=False)
    temperature: float = field(init=False)
    prompt_dir: Path = field(default=PROMPT_DIR)

    def __post_init__(self) -> None:
        """
        Post-initialization to load configurations.
        """
        _openai_config = load_openai_env()
        self.model_id = _openai_config.model
        self.temperature = _openai_config.temperature
        self.client = AsyncOpenAI(
            api_key=_openai_config.api_key,
            base_url=_openai_config.api_base,
            timeout=_openai_config.timeout,
            max_retries=_openai_config.max_retries,
        )

    def load_prompt(self, kw: str = "analysis") -> str:
        """
        Load a prompt template from the prompts directory.

        Args:
            kw (str, optional): The keyword to identify the prompt file. Defaults to "analysis".

        Returns:
            str: The content of the prompt file.

        Raises:
            FileNotFoundError: If the prompt file for the given keyword does not exist.
        """
        prompt_path = self.prompt_dir / f"{kw}.txt"
        if not prompt_path.is_file():
            logger.error(
                "FileNotFoundError: Prompt file for keyword '{}' not found.", kw
            )
            raise FileNotFoundError(f"Prompt file for keyword '{kw}' not found.")
        with open(prompt_path, "r", encoding="utf-8") as f:
            logger.debug("Loaded prompt from '{}'", prompt_path)
            return f.read()

    async def call_chat(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
    ) -> str:
        """
        Call OpenAI Chat completion.

        Args:
            prompt (str): The user prompt.
            system_prompt (str | None): Optional system prompt.
            temperature (float | None): Overrides the configured temperature.

        Returns:
            str: The response text.

        Raises:
            RuntimeError: If the chat inference fails.
        """
        try:
            messages: list[ChatCompletionMessageParam] = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})

            response = await self.client.chat.completions.create(
                model=self.model_id,
                messages=messages,
                temperature=self.temperature if temperature is None else temperature,
            )
            return response.choices[0].message.content or ""
        except Exception as e:
            logger.error("Error during chat inference: {}", e)
            raise RuntimeError(f"Chat inference failed: {e}") from e
