"""Static suspicion heuristic and kill-eligibility checks.

The heuristic is intentionally noisy: unrecognized software talking to high
ports is flagged, and user rules are expected to override it.
"""

from __future__ import annotations

EPHEMERAL_PORT_THRESHOLD = 49152

# Ports historically associated with backdoors and reverse shells.
SUSPICIOUS_PORTS: frozenset[str] = frozenset(
    {"4444", "5555", "6666", "1337", "31337", "8888"}
)

# Processes that must never be terminated.
SYSTEM_PROCESSES: frozenset[str] = frozenset(
    {
        # Core system
        "kernel_task", "launchd", "WindowServer", "loginwindow",
        "mds", "mds_stores", "trustd", "syslogd", "configd",
        "securityd", "coreauthd", "UserEventAgent", "distnoted",
        # Networking
        "rapportd", "sharingd", "identityservicesd", "symptomsd",
        "networkd", "bluetoothd", "airportd", "mDNSResponder",
        "netbiosd", "WiFiAgent",
        # Apple services
        "apsd", "cloudd", "nsurlsessiond", "CommCenter", "bird",
        "locationd", "timed", "assistantd", "siriknowledged",
        "searchpartyd", "findmydeviced", "familycircled",
        # Media & sync
        "mediaremoted", "AMPDeviceDiscoveryAgent", "photoanalysisd",
        "IMTransferAgent", "calaccessd", "remindd",
        # Updates & store
        "softwareupdated", "storeassetd", "storedownloadd",
        # Misc daemons
        "accountsd", "akd", "biomesyncd", "coreduetd",
        "suggestd", "parsecd", "lsd", "mdworker", "usernoted",
    }
)

KNOWN_APPS: frozenset[str] = frozenset(
    {
        # Browsers
        "Safari", "Google Chrome", "Google Chrome Helper",
        "Firefox", "Brave Browser", "Arc", "Microsoft Edge",
        "Opera", "Vivaldi", "Orion",
        # Communication
        "Slack", "Discord", "Messages", "FaceTime", "zoom.us",
        "Telegram", "WhatsApp", "Signal", "Microsoft Teams",
        "Skype", "Webex",
        # Email
        "Mail", "Outlook", "Spark", "Thunderbird",
        # Media & streaming
        "Spotify", "Music", "Podcasts", "TV", "VLC",
        # Cloud & sync
        "Finder", "Dropbox", "Google Drive", "OneDrive",
        "iCloud", "Box",
        # Productivity
        "Notes", "Maps", "Calendar", "Reminders",
        "Notion", "Obsidian", "Bear",
        # Password managers
        "1Password", "Bitwarden",
        # Development
        "Code Helper", "node", "python3", "python", "curl",
        "git-remote-https", "Xcode", "Docker", "Postman",
        "npm", "yarn", "ruby", "php", "java", "go",
        "Terminal", "iTerm2", "Warp", "ssh", "wget",
        # Apple system apps
        "App Store", "System Preferences", "System Settings",
        "Preview", "TextEdit", "Photo Booth",
        # Gaming
        "Steam", "Steam Helper",
    }
)


def port_number(port: str) -> int | None:
    """Parse a port string, or None for wildcards and placeholders."""
    try:
        return int(port)
    except ValueError:
        return None


def is_known_process(name: str) -> bool:
    return name in KNOWN_APPS or name in SYSTEM_PROCESSES


def evaluate_suspicion(
    process_name: str,
    remote_port: str,
    remote_address: str = "",
) -> bool:
    """Return True if a connection looks suspicious before user rules apply.

    Checks, in order: known-bad port, then a high ephemeral port opened by a
    process that is not on the known list. ``remote_address`` is accepted
    for signature stability but does not influence the result.
    """
    if remote_port in SUSPICIOUS_PORTS:
        return True

    port = port_number(remote_port)
    if port is not None and port > EPHEMERAL_PORT_THRESHOLD:
        return not is_known_process(process_name)

    return False


def can_kill(process_name: str) -> bool:
    """Whether the process may be offered for termination."""
    return process_name not in SYSTEM_PROCESSES
