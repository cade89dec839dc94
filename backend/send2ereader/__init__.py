"""Pair a browser with an e-reader through a short key and push ebooks to it."""
