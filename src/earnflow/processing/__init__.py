"""Pure calculators: price/market cap, guidance surprise, coverage."""
