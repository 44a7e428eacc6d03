# Role: Central enum of supported intents. Keeps the system consistent across:
# classifier output, confidence routing, orchestrator branches, and prompts.

from enum import Enum


class Intent(str, Enum):
    NAVIGATE_WITH_STOPS = "navigate_with_stops"
    NAVIGATE_DIRECT = "navigate_direct"
    FIND_PLACE = "find_place"
    ADD_STOP = "add_stop"
    REMOVE_STOP = "remove_stop"
    MODIFY_ROUTE = "modify_route"
    GET_SUGGESTIONS = "get_suggestions"
    SET_ANCHOR = "set_anchor"
    CONFIRM = "confirm"
    DENY = "deny"
    CANCEL = "cancel"
    UNKNOWN = "unknown"


# Intents that change the stop set of an existing route (re-optimization triggers).
ROUTE_EDIT_INTENTS = {Intent.ADD_STOP, Intent.REMOVE_STOP, Intent.MODIFY_ROUTE}
