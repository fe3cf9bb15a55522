ROOM_GROUP = "room:{room_name}" # general group - every subscribed member of a room
ROOM_ADMIN_GROUP = "room:{room_name}:admin" # admin-only group
REDIS_EVENTS_CHANNEL = "chatsphere:events" # pub/sub channel the relay publishes envelopes on

# **Relay envelope fields**
# - `origin` = instance id of the publishing relay
# - `event` = outbound event name (pendingUser, newMessage, ...)
# - `data` = event payload
# - `targets` = connection ids resolved when the frame was published


def room_group(room_name: str) -> str:
    return ROOM_GROUP.format(room_name=room_name)


def admin_group(room_name: str) -> str:
    return ROOM_ADMIN_GROUP.format(room_name=room_name)
