import os
from typing import Optional

from dotenv import load_dotenv
from langchain_google_genai import ChatGoogleGenerativeAI, GoogleGenerativeAIEmbeddings

from session_rag.exception.custom_exception import Misconfigured
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.utils.config_loader import load_config


class ApiKeyManager:
    REQUIRED = ["GOOGLE_API_KEY"]

    def __init__(self):
        load_dotenv()
        self.keys = {}

        # Iterate over the required keys:
        for k in self.REQUIRED:
            if val := os.getenv(k):
                self.keys[k] = val
                log.info(f"Loaded {k} from env")
            else:
                log.error(f"Missing required API key: {k}")

        missing = [k for k in self.REQUIRED if k not in self.keys]
        if missing:
            raise Misconfigured(
                f"Missing environment variables: {', '.join(missing)}"
            )

    def get(self, key: str) -> str:
        return self.keys[key]


class ModelLoader:
    """
    Responsible for:
    - Loading the embedding model used for chunks and queries
    - Loading the streaming chat model used for answers
    - Resolving which chat model a request may use
    """

    def __init__(self, config: Optional[dict] = None):
        # Validates env keys as soon as the loader is built so a missing key
        # fails the request before any work is done
        self.api_key_mgr = ApiKeyManager()
        self.api_keys = self.api_key_mgr.keys

        self.config = config or load_config()
        log.info("YAML config loaded", config_keys=list(self.config.keys()))

    def load_embeddings(self) -> GoogleGenerativeAIEmbeddings:
        """
        Load and return embedding model from Google Generative AI.
        """
        model_name = self.config["embedding_model"]["model_name"]
        log.info("Loading embedding model", model=model_name)
        return GoogleGenerativeAIEmbeddings(
            model=model_name, google_api_key=self.api_keys.get("GOOGLE_API_KEY")
        )

    def resolve_model(self, requested: Optional[str] = None) -> str:
        """
        Return the requested chat model if it is on the allow-list, else the default.
        """
        llm_config = self.config["llm"]
        default = llm_config["model_name"]
        allowed = llm_config.get("allowed_models") or [default]

        if requested and requested in allowed:
            return requested
        if requested:
            log.warning(
                "Requested model not allowed, using default",
                requested=requested,
                default=default,
            )
        return default

    def load_llm(self, model_name: Optional[str] = None) -> ChatGoogleGenerativeAI:
        """
        Load and return the configured chat model.
        Args:
            model_name: allow-listed model name; None selects the default

        Returns:
            Configured LLM instance (supports .astream)
        """
        llm_config = self.config["llm"]
        provider = llm_config.get("provider", "google")
        model = self.resolve_model(model_name)

        if provider != "google":
            raise Misconfigured(f"Unsupported LLM provider: {provider}")

        log.info("Loading LLM", model=model)
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=self.api_keys.get("GOOGLE_API_KEY"),
            temperature=llm_config.get("temperature"),
            max_output_tokens=llm_config.get("max_output_tokens"),
        )
