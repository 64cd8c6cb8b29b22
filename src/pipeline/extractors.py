"""
Field Extraction Logic - Recover Name, Phone and Address from a Detail View

The detail view carries no labels we can rely on, so fields are recovered
from raw text fragments with an ordered rule table. Works on the HTML of a
Playwright page (parsed with selectolax) so the same code path can be
exercised from plain HTML strings.

Phases:
- Direct fields: labelled selectors seed fields verbatim (masked or not)
- Structured: fragments of the detail region, masked ones and labels dropped
- Classification: PHONE -> ADDRESS -> NAME, first matching rule claims a fragment
- Fallback: phone pattern scan over the full page text
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from selectolax.parser import HTMLParser, Node
from playwright.sync_api import Page

from src.config import ExtractionConfig
from src.schemas import ExtractedRecord
from src.pipeline.masking import clean_text, has_mask_marker


FIELDS = ('name', 'phone', 'address')


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the rule table: if ``predicate(text)`` the fragment belongs to ``field``."""
    field: str
    description: str
    predicate: Callable[[str], bool]


class FieldExtractor:
    """
    Classifies text fragments of a detail view into name / phone / address.

    ``classify`` is a pure function of its inputs: the same ordered
    candidates always produce the same record.
    """

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or ExtractionConfig()

        # Detail region, most specific first
        self.detail_region_selectors = [
            '[class*="shipping-to"]',
            '[class*="recipient"]',
            '[class*="address-info"]',
            '[class*="buyer-info"]',
            '.index-shipping-to',
        ]
        self.fragment_selector = 'span, div, p'

        # Labelled fields; values are taken verbatim even when still masked
        self.direct_field_selectors: Dict[str, str] = {
            'name': '[class*="recipient-name"], [class*="buyer-name"]',
            'phone': '[class*="phone-number"], [class*="mobile"]',
            'address': '[class*="full-address"], [class*="delivery-address"]',
        }

        self.section_labels = {self._label_key(s) for s in self.config.section_labels}

        cc = re.escape(self.config.phone_country_code)

        # Phone-shaped fragment: country code or trunk 0, then digits and separators only
        self.phone_candidate_pattern = re.compile(
            r'^\(?(?:\+?' + cc + r'|00' + cc + r'|0)([\d\-().]{8,})$'
        )
        self.min_phone_digits = 8

        # Address signals
        self.long_text_threshold = 30
        self.postal_code_pattern = re.compile(r'(?<!\d)\d{5}(?!\d)')
        keywords = sorted(self.config.address_keywords, key=len, reverse=True)
        # whole words; "no." style keywords need no right-hand boundary
        alternatives = [re.escape(k) + (r'(?!\w)' if k[-1:].isalnum() else '') for k in keywords if k]
        self.address_keyword_pattern = re.compile(
            r'(?<!\w)(?:' + '|'.join(alternatives) + r')',
            re.IGNORECASE,
        )

        # Name signals
        self.name_min_len = 3
        self.name_max_len = 49
        self.name_min_letter_fraction = 0.6
        self.name_max_digits = 3  # exclusive ceiling

        # Full-page fallback: locale country code or trunk 0, then 8-12 digits/separators
        self.fallback_phone_pattern = re.compile(r'(?<!\d)(?:\+?' + cc + r'|0)[\d\s\-]{8,12}(?!\d)')

        self.rules: List[ClassificationRule] = [
            ClassificationRule('phone', 'country/trunk prefix and at least 8 digits', self.is_phone_candidate),
            ClassificationRule('address', 'long text, postal code or address keyword', self.is_address_candidate),
            ClassificationRule('name', 'short, mostly letters, few digits', self.is_name_candidate),
        ]

    # -------------------------
    # Rule predicates
    # -------------------------
    @staticmethod
    def _label_key(text: str) -> str:
        return clean_text(text).lower().rstrip(':').strip()

    def is_section_label(self, text: str) -> bool:
        return self._label_key(text) in self.section_labels

    def is_phone_candidate(self, text: str) -> bool:
        compact = re.sub(r'\s+', '', text or '')
        m = self.phone_candidate_pattern.match(compact)
        if not m:
            return False
        return sum(ch.isdigit() for ch in m.group(1)) >= self.min_phone_digits

    def is_address_candidate(self, text: str) -> bool:
        if not text:
            return False
        if len(text) > self.long_text_threshold:
            return True
        if self.postal_code_pattern.search(text):
            return True
        return self.address_keyword_pattern.search(text) is not None

    def is_name_candidate(self, text: str) -> bool:
        if not text or not (self.name_min_len <= len(text) <= self.name_max_len):
            return False
        chars = [ch for ch in text if not ch.isspace()]
        if not chars:
            return False
        letters = sum(ch.isalpha() for ch in chars)
        digits = sum(ch.isdigit() for ch in chars)
        if digits >= self.name_max_digits:
            return False
        return (letters / len(chars)) >= self.name_min_letter_fraction

    # -------------------------
    # Classification (pure)
    # -------------------------
    def filter_candidates(self, fragments: Iterable[str]) -> List[str]:
        """Structured-phase filters, in order: clean, drop masked, drop labels, dedupe."""
        out: List[str] = []
        seen = set()
        for raw in fragments:
            text = clean_text(raw)
            if not text:
                continue
            if has_mask_marker(text):
                continue
            if self.is_section_label(text):
                continue
            if text in seen:
                continue
            seen.add(text)
            out.append(text)
        return out

    def classify(
        self,
        candidates: List[str],
        page_text: Optional[str] = None,
        seed: Optional[Dict[str, Optional[str]]] = None,
    ) -> ExtractedRecord:
        """Assign candidates to fields with the rule table, then run the phone fallback.

        Each candidate is claimed by the first rule whose predicate matches;
        it fills that field only if the field is still empty. Fields present
        in ``seed`` are never overwritten.
        """
        fields: Dict[str, Optional[str]] = {f: None for f in FIELDS}
        for f in FIELDS:
            value = clean_text((seed or {}).get(f))
            if value:
                fields[f] = value

        for text in candidates:
            for rule in self.rules:
                if rule.predicate(text):
                    if fields[rule.field] is None:
                        fields[rule.field] = text
                    break

        if fields['phone'] is None and page_text:
            fields['phone'] = self.scan_phone(page_text)

        return ExtractedRecord(
            name=fields['name'],
            phone=fields['phone'],
            address=fields['address'],
            raw_texts=list(candidates),
        )

    def scan_phone(self, page_text: str) -> Optional[str]:
        """First unmasked locale phone number anywhere in ``page_text``."""
        for m in self.fallback_phone_pattern.finditer(page_text):
            # a mask run right after the digits means the number is truncated
            window = page_text[m.start():m.end() + 3]
            if has_mask_marker(window):
                continue
            phone = clean_text(m.group(0))
            if phone:
                return phone
        return None

    # -------------------------
    # HTML phases (selectolax)
    # -------------------------
    def _detail_region(self, parser: HTMLParser) -> Optional[Node]:
        for sel in self.detail_region_selectors:
            try:
                node = parser.css_first(sel)
            except Exception:
                node = None
            if node is not None:
                return node
        return parser.body

    @staticmethod
    def _own_text(node: Node) -> str:
        try:
            return clean_text(node.text(deep=False))
        except Exception:
            return ''

    def collect_fragments(self, html: str) -> List[str]:
        """Text of every fragment element in the detail region that carries its own text.

        Wrapper elements whose text only comes from their children are skipped,
        otherwise a container would surface as one long pseudo-address.
        """
        parser = HTMLParser(html or '')
        region = self._detail_region(parser)
        if region is None:
            return []
        fragments: List[str] = []
        for node in region.css(self.fragment_selector):
            if not self._own_text(node):
                continue
            text = clean_text(node.text(separator=' '))
            if text:
                fragments.append(text)
        return fragments

    def direct_fields(self, html: str) -> Dict[str, Optional[str]]:
        parser = HTMLParser(html or '')
        out: Dict[str, Optional[str]] = {}
        for field, sel in self.direct_field_selectors.items():
            try:
                node = parser.css_first(sel)
            except Exception:
                node = None
            if node is None:
                continue
            text = clean_text(node.text(separator=' '))
            if text and not self.is_section_label(text):
                out[field] = text
        return out

    @staticmethod
    def page_text_from_html(html: str) -> str:
        parser = HTMLParser(html or '')
        for tag in parser.css('script, style, noscript'):
            tag.decompose()
        body = parser.body
        if body is None:
            return ''
        return body.text(separator='\n')

    def extract_from_html(self, html: str, page_text: Optional[str] = None) -> ExtractedRecord:
        candidates = self.filter_candidates(self.collect_fragments(html))
        seed = self.direct_fields(html)
        if page_text is None:
            page_text = self.page_text_from_html(html)
        return self.classify(candidates, page_text=page_text, seed=seed)

    def extract(self, page: Page) -> ExtractedRecord:
        """Extract from the live page (call after disclosure)."""
        html = page.content()
        try:
            page_text = page.inner_text('body')
        except Exception:
            page_text = None
        return self.extract_from_html(html, page_text=page_text)
