from .transcription import TranscriptionRecord
from .meeting import Meeting
# base and mixins are imported by the above as needed
