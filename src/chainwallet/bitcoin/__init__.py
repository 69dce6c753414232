"""Bitcoin wire formats: transactions, blocks and addresses."""
