"""HTTP routers for the chatbot API."""
