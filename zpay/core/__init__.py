"""Core ZPay services: accounts, API keys, licensing, webhooks, transactions."""
