"""Rule-set contract and validation primitives."""
