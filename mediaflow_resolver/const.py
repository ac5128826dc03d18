WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
EMBED_URL = "https://www.youtube.com/embed/{video_id}"
MOBILE_WATCH_URL = "https://m.youtube.com/watch?v={video_id}"
INNERTUBE_PLAYER_URL = "https://www.youtube.com/youtubei/v1/player"

INNERTUBE_ANDROID_CONTEXT = {
    "client": {
        "clientName": "ANDROID",
        "clientVersion": "19.09.37",
        "androidSdkVersion": 30,
        "hl": "en",
        "gl": "US",
    }
}

# Header profiles. Every profile is internally consistent: a desktop user agent is never paired with a
# mobile platform hint. "device" selects which strategies may use the profile.
HEADER_PROFILES = [
    {
        "name": "chrome-windows",
        "device": "desktop",
        "region": "US",
        "headers": {
            "user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
            "accept-language": "en-US,en;q=0.9",
            "sec-ch-ua": '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"',
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"Windows"',
        },
    },
    {
        "name": "chrome-macos",
        "device": "desktop",
        "region": "US",
        "headers": {
            "user-agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
            "accept-language": "en-US,en;q=0.9",
            "sec-ch-ua": '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"',
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"macOS"',
        },
    },
    {
        "name": "chrome-linux",
        "device": "desktop",
        "region": "GB",
        "headers": {
            "user-agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
            "accept-language": "en-GB,en;q=0.9",
            "sec-ch-ua": '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"',
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"Linux"',
        },
    },
    {
        "name": "safari-iphone",
        "device": "mobile",
        "region": "US",
        "headers": {
            "user-agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1",
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "accept-language": "en-US,en;q=0.9",
        },
    },
    {
        "name": "chrome-android",
        "device": "mobile",
        "region": "US",
        "headers": {
            "user-agent": "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Mobile Safari/537.36",
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "accept-language": "en-US,en;q=0.9",
            "sec-ch-ua": '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"',
            "sec-ch-ua-mobile": "?1",
            "sec-ch-ua-platform": '"Android"',
        },
    },
    {
        "name": "tizen-tv",
        "device": "tv",
        "region": "US",
        "headers": {
            "user-agent": "Mozilla/5.0 (SMART-TV; Linux; Tizen 6.0) AppleWebKit/537.36 (KHTML, like Gecko) SamsungBrowser/4.0 Chrome/76.0.3809.146 TV Safari/537.36",
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "accept-language": "en-US,en;q=0.9",
        },
    },
]

# Substrings that only appear on interstitial / challenge pages.
BOT_DETECTION_MARKERS = [
    "g-recaptcha",
    "www.google.com/recaptcha",
    "/sorry/index",
    "unusual traffic from your computer network",
    "confirm you're not a bot",
    "confirm you’re not a bot",
]

# Status codes the upstream uses to throttle automated clients.
BLOCKING_STATUS_CODES = [403, 429]

VIDEO_QUALITY_ORDER = ["2160p", "1440p", "1080p", "720p", "480p", "360p", "240p", "144p"]

AUDIO_QUALITY_ORDER = ["AUDIO_QUALITY_HIGH", "AUDIO_QUALITY_MEDIUM", "AUDIO_QUALITY_LOW", "AUDIO_QUALITY_ULTRALOW"]

CONTENT_TYPES = {
    ("m4a", True): "audio/mp4",
    ("mp4", True): "audio/mp4",
    ("webm", True): "audio/webm",
    ("mp3", True): "audio/mpeg",
    ("opus", True): "audio/ogg",
    ("mp4", False): "video/mp4",
    ("webm", False): "video/webm",
    ("3gp", False): "video/3gpp",
}
