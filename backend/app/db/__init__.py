############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# __init__.py: Database package initialization and exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database package for chatbridge."""

from backend.app.db.base import Base
from backend.app.db.session import AsyncSessionLocal, engine, get_async_db, get_async_db_context

__all__ = ["Base", "get_async_db", "get_async_db_context", "engine", "AsyncSessionLocal"]
