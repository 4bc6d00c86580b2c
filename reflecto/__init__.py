"""Reflecto: notebooks, assistant chat sessions and feedback intake over a FastAPI + SQLite backend."""

__version__ = "1.0.0"
