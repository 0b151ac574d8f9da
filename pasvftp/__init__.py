__ver__ = '1.0.0'

# response codes, kept literal for wire compatibility
COMMAND_SUCCEED = '240'
COMMAND_FAILED = '140'
COMMAND_CONNECTION_CLOSED = '520'
