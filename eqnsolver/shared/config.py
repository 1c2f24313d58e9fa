"""
Configuration for the equation solver service.
Defines provider credentials, retry tunables, and server-side clamps.
"""
from typing import Optional
from pydantic_settings import BaseSettings


class SolverSettings(BaseSettings):
    """
    Service-wide settings read from the environment (and .env).

    NOTE: This is the ONLY place ambient environment state is read. Routes turn
    these values into an explicit DerivationConfig which is threaded through the
    pipeline - agents and the coordinator never consult this object directly.
    """

    # Default provider when the request does not name one
    default_provider: str = "groq"

    # Groq (OpenAI-compatible)
    groq_api_key: Optional[str] = None
    groq_model: str = "openai/gpt-oss-20b"
    groq_api_url: str = "https://api.groq.com/openai/v1/chat/completions"

    # OpenRouter (OpenAI-compatible, with app attribution headers)
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = "openai/gpt-4o"
    openrouter_api_url: str = "https://openrouter.ai/api/v1/chat/completions"
    openrouter_site_url: str = "https://eqnsolver.vercel.app"
    openrouter_site_title: str = "AI Equation Solver"

    # Cerebras (OpenAI-compatible)
    cerebras_api_key: Optional[str] = None
    cerebras_model: str = "llama-3.3-70b"
    cerebras_api_url: str = "https://api.cerebras.ai/v1/chat/completions"

    # NVIDIA NIM (OpenAI-compatible)
    nvidia_api_key: Optional[str] = None
    nvidia_model: str = "meta/llama-3.1-70b-instruct"
    nvidia_api_url: str = "https://integrate.api.nvidia.com/v1/chat/completions"

    # Gemini (contents-array wire format, API key passed in the URL)
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    gemini_api_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"

    # Retry / pacing tunables
    max_retries: int = 3
    base_delay_ms: int = 500
    inter_round_delay_ms: int = 0

    # Server-side clamps (hosting platform execution-time ceiling)
    max_iterations_cap: int = 4
    default_max_iterations: int = 4
    default_temperature: float = 0.1

    # Appendix synthesis is an extra large call - allow disabling for small models
    enable_appendix: bool = True

    # Debug
    debug_mode: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
solver_settings = SolverSettings()
