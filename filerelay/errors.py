"""
Relay Errors

Exception taxonomy shared by the coordinator and the agent.

- AgentNotConnectedError: a transfer targets an identity absent from the registry
- TransferFileNotFoundError: the agent cannot find the requested file
- OSError (the builtin IOError): local read/write failure on either side
- ProtocolError: malformed or unrecognized envelope (logged and dropped)
- TransferInProgressError: a second active request would write the same output file
"""


class RelayError(Exception):
    """Base exception for relay errors."""
    pass


class AgentNotConnectedError(RelayError):
    """No live connection is registered for the agent."""
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Client {agent_id} not connected")


class TransferFileNotFoundError(RelayError):
    """Requested file does not exist under the agent's base directory."""
    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(f"file not found: {file_name}")


class ProtocolError(RelayError):
    """Envelope could not be parsed or failed schema validation."""
    pass


class InvalidTransitionError(RelayError):
    """A transfer request was moved to a status its state machine forbids."""
    def __init__(self, request_id: str, current: str, target: str):
        self.request_id = request_id
        self.current = current
        self.target = target
        super().__init__(
            f"Transfer {request_id}: invalid transition {current} -> {target}"
        )


class TransferInProgressError(RelayError):
    """An active transfer already writes the same agent file."""
    def __init__(self, agent_id: str, file_name: str, request_id: str):
        self.agent_id = agent_id
        self.file_name = file_name
        self.request_id = request_id
        super().__init__(
            f"Download of {file_name} from {agent_id} already in progress ({request_id})"
        )
