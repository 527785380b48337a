"""Project-wide numeric constants for stable comparisons and epsilons.

Keep this module minimal and import-safe to avoid circular imports.
"""

# Numerical epsilon for vector normalization (used for cosine-norm stability)
NORM_EPS: float = 1e-12

# Large negative value added to attention scores of padded positions and used
# when masking before max-pooling.
MASK_NEG_INF: float = -1e9

# Long-text embedding: consecutive windows overlap by max_length // divisor
# tokens and the first window weighs more than the rest in the final mean.
CHUNK_OVERLAP_DIVISOR: int = 10
FIRST_CHUNK_WEIGHT: float = 1.2

