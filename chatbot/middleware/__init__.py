"""Request guards for the chatbot API."""
