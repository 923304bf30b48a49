"""Pure text heuristics: folding, fuzzy matching, money, exchange and dates."""
