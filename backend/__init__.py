############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# __init__.py: Package version
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""chatbridge - Conversation Relay for LLM Chat Providers."""

__version__ = "0.3.0"
