import logging

# Define TRACE level (below DEBUG which is 10)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")
