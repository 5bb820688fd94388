############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# __init__.py: Service layer package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################


"""Services for chatbridge: image fetching, upstream relay and the chat handler."""
