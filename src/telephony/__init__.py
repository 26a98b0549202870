"""Call-side components of the bridge.

Audio arrives from Twilio Media Streams as 8 kHz mu-law frames and is handed to
a live transcription connection unchanged:
Twilio -> websocket (api.stream_routes) -> CallSession -> Deepgram live stream.
"""
