import re
import logging
from enum import Enum
from typing import List, Optional, Pattern, Tuple

from ..core.perftest import ModificationRules, MalformedRuleError


class RuleAction(Enum):
    ABORT = "abort"
    REWRITE = "rewrite"
    CONTINUE = "continue"


class RuleEngine:
    """
    Decides what happens to each intercepted request and rewrites the
    navigation document.

    Rules are compiled once per engine; deciding and rewriting are pure
    functions of the request description and the document body.
    """

    DOCUMENT_RESOURCE_TYPE = 'document'

    # Opening <script> tag whose double-quoted src contains the fragment
    DEFER_TEMPLATE = r'(<script[^>]*src="[^"]*{fragment}[^"]*"[^>]*)>'

    def __init__(self, rules: Optional[ModificationRules] = None):
        self.rules = rules or ModificationRules()
        self.logger = logging.getLogger("perfprobe.rules")
        self._defer_patterns = self._compile_defer_patterns(self.rules.defer)
        self._replace_pattern = self._compile_replace_pattern()

    def _compile_defer_patterns(self, fragments: Tuple[str, ...]) -> List[Tuple[str, Pattern]]:
        return [
            (fragment, re.compile(self.DEFER_TEMPLATE.format(fragment=re.escape(fragment)), re.IGNORECASE))
            for fragment in fragments
        ]

    def _compile_replace_pattern(self) -> Optional[Pattern]:
        html_replace = self.rules.html_replace
        if html_replace is None:
            return None
        try:
            return re.compile(html_replace.find)
        except re.error as e:
            raise MalformedRuleError(f"Malformed html_replace pattern {html_replace.find!r}: {e}")

    def is_blocked(self, url: str) -> bool:
        return any(fragment in url for fragment in self.rules.block)

    def decide(self, url: str, resource_type: str, is_navigation: bool) -> RuleAction:
        """
        Decide the action for one intercepted request.

        Args:
            url: Full request URL
            resource_type: Playwright resource type ('document', 'script', ...)
            is_navigation: Whether the request drives a frame navigation

        Returns:
            RuleAction for the request
        """
        if self.is_blocked(url):
            return RuleAction.ABORT

        if (resource_type == self.DOCUMENT_RESOURCE_TYPE and is_navigation
                and self.rules.rewrites_html):
            return RuleAction.REWRITE

        return RuleAction.CONTINUE

    def rewrite_html(self, body: str) -> str:
        """Apply defer rules, then the html_replace rule, to a document body."""
        for fragment, pattern in self._defer_patterns:
            body, count = pattern.subn(r'\1 defer>', body)
            if count:
                self.logger.info(f"[HTML MOD]: Deferred {count} script(s) matching '{fragment}'")

        if self._replace_pattern is not None:
            replacement = self.rules.html_replace.replace
            # Callable replacement keeps backslashes and group refs literal
            body, count = self._replace_pattern.subn(lambda match: replacement, body)
            self.logger.info(f"[HTML MOD]: Replaced {count} HTML fragment(s)")

        return body
