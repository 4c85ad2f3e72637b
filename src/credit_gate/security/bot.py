"""User-Agent bot heuristic.

Allow-list biased: anything that does not look like a mainstream
browser is treated as automated. False positives on exotic browsers
are accepted.
"""

from __future__ import annotations

from typing import Protocol

# Automation tools, HTTP libraries, headless drivers, vulnerability
# scanners and text-mode browsers.
BOT_PATTERNS: tuple[str, ...] = (
    "bot", "crawler", "spider", "scraper",
    "curl", "wget", "python", "java", "perl", "ruby",
    "go-http", "http", "scrapy", "mechanize",
    "headless", "phantom", "selenium", "webdriver",
    "postman", "insomnia", "apache-httpclient", "okhttp",
    "libwww-perl", "masscan", "nmap", "nikto",
    "sqlmap", "dirbuster", "gobuster", "burp", "zap",
    "nessus", "openvas", "acunetix", "netsparker",
    "appscan", "qualys", "rapid7", "metasploit",
    "havij", "pangolin", "sqlsus", "sqlninja",
    "w3af", "skipfish", "wapiti", "arachni",
    "lynx", "links", "w3m",
)  # fmt: skip

BROWSER_PATTERNS: tuple[str, ...] = (
    "mozilla",
    "chrome",
    "safari",
    "edge",
    "firefox",
    "opera",
    "msie",
)


class BotClassifier(Protocol):
    """Anything that can tell automated clients from people."""

    def is_bot(self, user_agent: str) -> bool: ...


class UserAgentHeuristic:
    """Substring matching against known bot and browser markers."""

    def __init__(
        self,
        bot_patterns: tuple[str, ...] = BOT_PATTERNS,
        browser_patterns: tuple[str, ...] = BROWSER_PATTERNS,
    ) -> None:
        self._bot_patterns = tuple(p.lower() for p in bot_patterns)
        self._browser_patterns = tuple(p.lower() for p in browser_patterns)

    def is_bot(self, user_agent: str) -> bool:
        """Return True when the User-Agent should be treated as automated.

        Empty strings, known automation markers, and strings carrying
        no recognised browser marker are all bots.
        """
        ua = user_agent.lower()
        if not ua:
            return True
        if any(pattern in ua for pattern in self._bot_patterns):
            return True
        return not any(browser in ua for browser in self._browser_patterns)


_default_heuristic = UserAgentHeuristic()


def is_bot(user_agent: str | None) -> bool:
    """Classify with the default pattern lists."""
    return _default_heuristic.is_bot(user_agent or "")
