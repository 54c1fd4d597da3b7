"""Chat domain: conversations, messages and the /chat socket namespace."""
