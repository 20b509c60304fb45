"""robots.txt backend built on Protego.

Selected by :func:`crawl_policy.robots.select_backend` when the ``protego``
distribution is importable. Protego reads the sitemap and crawl-delay
directives. Allow/Disallow precedence is decided on the same compiled groups
as the native backend (literal-character specificity, ``Allow`` wins ties,
raw paths compared without percent normalization), so both backends return
the same decisions and the same matched rule.

The resolver passes already-resolved group names, so Protego's own agent
scoring picks that exact group.
"""

from __future__ import annotations

from protego import Protego

from .robots import RobotsPattern, RobotsRules


class ProtegoRobotsRules:
    def __init__(self, raw_text: str) -> None:
        self._parser = Protego.parse(raw_text)
        self._rules = RobotsRules(raw_text)
        self.agents = self._rules.agents

    def matched_rule(self, url: str, user_agent: str) -> RobotsPattern | None:
        return self._rules.matched_rule(url, user_agent)

    def is_allowed(self, url: str, user_agent: str) -> bool:
        rule = self.matched_rule(url, user_agent)
        return rule is None or rule.directive == "allow"

    def get_sitemaps(self) -> list[str]:
        return list(self._parser.sitemaps)

    def get_crawl_delay(self, user_agent: str) -> int | None:
        if user_agent not in self.agents:
            return None
        delay = self._parser.crawl_delay(user_agent)
        if delay is None:
            return None
        return int(round(float(delay) * 1000))
