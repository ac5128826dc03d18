"""
Stream resolution pipeline.

- identifiers: video identifier parsing
- extractors: ordered extraction strategies (embed, mobile, watch page, player API, yt-dlp)
- resolver: strategy chain state machine with identity rotation and backoff
- utils.format_selector / utils.cipher / utils.player_response: metadata normalization and selection
- storage / materializer: cache lookup and upload to S3-compatible storage
- pipeline / main: end-to-end entry points
"""
