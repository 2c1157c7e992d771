from policywatch.llm.factory import (
    get_analysis_llm,
    get_analysis_model_name,
    get_analysis_provider,
    clear_llm_cache,
    load_config_overrides,
)
from policywatch.llm.client import LLMClient, LLMResponse
