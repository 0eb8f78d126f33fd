# Configuration for the SJCAM media sync tool

# ==============================================================================
# CONSTANTS (Hardcoded based on Reverse Engineering)
# ==============================================================================

# The Gateway IP Address of the Camera AP.
CAM_IP = "192.168.42.1"

# The TCP Port for the JSON control protocol.
CONTROL_PORT = 7878

# The TCP Port the camera streams file payloads from after a GetFile request.
DATA_PORT = 8787

# Local addresses handed out by the camera AP start with this prefix.
CAMERA_SUBNET_PREFIX = "192.168.42."

# Media files live in <media_folder>/100MEDIA/ on the SD card.
MEDIA_SUBFOLDER = "100MEDIA"

# Transport announced in the PermitReceiver request ("TCP" or "UDP").
RECEIVER_PROTO = "TCP"

# ==============================================================================
# User Configuration
# ==============================================================================

# Local directory that mirrors the camera's media folder.
MEDIA_DIR = "media"

# Bytes per recv() on the data channel.
RECEIVE_CHUNK_SIZE = 4096

# Socket timeouts in seconds. None blocks forever, which is what the camera
# firmware expects during long transfers.
CONTROL_TIMEOUT = None
DATA_TIMEOUT = None

# ==============================================================================
# Progress Reporting
# ==============================================================================

# Sliding window used to compute the transfer rate.
PROGRESS_WINDOW_SEC = 1.0

# A new rate is reported when it rises more than RISE or drops more than DROP
# (MB/s) from the last reported value.
PROGRESS_RISE_MBPS = 0.5
PROGRESS_DROP_MBPS = 1.0
