"""Common header names and MIME types."""

ACCEPT = "Accept"

APPLICATION_JSON = "application/json"
APPLICATION_OCTET_STREAM = "application/octet-stream"
APPLICATION_FORM_URLENCODED = "application/x-www-form-urlencoded"
