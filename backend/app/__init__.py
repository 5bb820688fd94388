############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# __init__.py: Application package
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""chatbridge application package."""

from backend import __version__

__all__ = ["__version__"]
