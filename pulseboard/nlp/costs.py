import logging

logger = logging.getLogger(__name__)

# USD per 1M tokens: (input, output)
MODEL_RATES = {
    'gpt-4o-mini': (0.15, 0.60),
    'gpt-4o': (2.50, 10.00),
    'gpt-4.1-mini': (0.40, 1.60),
    'claude-sonnet-4-20250514': (3.00, 15.00),
    'text-embedding-3-small': (0.02, 0.0),
    'text-embedding-3-large': (0.13, 0.0),
    # Local sentence-transformers models cost nothing per call
    'all-MiniLM-L6-v2': (0.0, 0.0),
    'sentence-transformers/all-MiniLM-L6-v2': (0.0, 0.0),
}


def estimate_cost_cents(model: str, input_tokens: int, output_tokens: int = 0) -> float:
    """Estimate the cost of one call in cents from the static rate table."""
    rates = MODEL_RATES.get(model)
    if rates is None:
        logger.warning(f"No rate configured for model {model}, recording zero cost")
        return 0.0

    input_rate, output_rate = rates
    dollars = (input_tokens * input_rate + output_tokens * output_rate) / 1_000_000
    return dollars * 100
