"""Static metadata describing OneTwoOne."""

APP_NAME = "OneTwoOne"
APP_VERSION = "1.0.0"
APP_ABOUT_TEXT = (
    "OneTwoOne pairs anonymous strangers for turn-based video, audio or text "
    "conversations and hosts moderated 1-on-1 debates with live viewers."
)
