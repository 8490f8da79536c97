"""
Web page parser for extracting content, metadata, links and product fields.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment

from .fetcher import FetchResult
from .frontier import normalize_url


@dataclass
class ParsedPage:
    """Container for the structured fields of a scraped page."""
    url: str
    title: Optional[str] = None
    content: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    links: List[str] = field(default_factory=list)
    price: Optional[str] = None
    discount: Optional[str] = None
    products: List[Dict[str, str]] = field(default_factory=list)
    status_code: int = 0
    content_type: Optional[str] = None
    content_length: int = 0
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_fetch(cls, fetch_result: FetchResult) -> 'ParsedPage':
        """Page carrying only what the fetch itself tells us."""
        return cls(
            url=fetch_result.url,
            content=fetch_result.content,
            status_code=fetch_result.status_code,
            content_type=fetch_result.content_type,
            content_length=fetch_result.content_length,
            headers=dict(fetch_result.headers or {}),
        )

    @property
    def word_count(self) -> int:
        return len(self.content.split()) if self.content else 0


# Star rating classes used by product listings, mapped to an audience estimate
RATING_TO_BUYERS = {
    'One': "Approximately 10-50 buyers",
    'Two': "Approximately 50-100 buyers",
    'Three': "Approximately 100-200 buyers",
    'Four': "Approximately 200-500 buyers",
    'Five': "Approximately 500+ buyers",
}


class ContentParser:
    """
    Parses HTML content into a ParsedPage.

    Errors are not swallowed here; the caller decides how a failed
    extraction affects the outcome.
    """

    PRICE_SELECTORS = '.price, .product-price, span[itemprop=price], .current-price'
    DISCOUNT_SELECTORS = '.discount, .sale-price, .price-cut, .savings'
    PRODUCT_SELECTOR = 'article.product_pod'

    def __init__(self, parser_backend: str = 'lxml'):
        self.parser_backend = parser_backend
        self.logger = logging.getLogger(__name__)

        # Patterns for cleaning content
        self.whitespace_pattern = re.compile(r'\s+')
        self.price_pattern = re.compile(r'\$\d+\.\d{2}')
        self.discount_pattern = re.compile(r'\d+%\s+off', re.IGNORECASE)

    def extract(self, url: str, fetch_result: FetchResult) -> ParsedPage:
        """
        Parse a fetched page and extract structured data.

        Args:
            url: The URL of the page
            fetch_result: The successful fetch

        Returns:
            ParsedPage with extracted data
        """
        soup = BeautifulSoup(fetch_result.content or '', self.parser_backend)
        page = ParsedPage.from_fetch(fetch_result)
        page.url = url

        page.metadata['charset'] = fetch_result.encoding or 'utf-8'
        page.metadata['document_size'] = str(len(fetch_result.content or ''))

        # Remove script and style elements
        for script in soup(["script", "style", "noscript"]):
            script.decompose()

        # Remove comments
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        self._extract_title(soup, page)
        self._extract_meta_tags(soup, page)
        self._extract_links(soup, page, url)
        page.price = self._extract_price(soup)
        page.discount = self._extract_discount(soup)
        self._extract_products(soup, page, url)
        self._extract_main_content(soup, page)

        self.logger.debug(f"Parsed content from {url}: {page.word_count} words, "
                          f"{len(page.links)} links, {len(page.products)} products")
        return page

    def _extract_title(self, soup: BeautifulSoup, page: ParsedPage):
        """Extract page title."""
        title_tag = soup.find('title')
        if title_tag:
            page.title = self._clean_text(title_tag.get_text())

    def _extract_meta_tags(self, soup: BeautifulSoup, page: ParsedPage):
        """Copy every named meta tag into the page metadata."""
        for meta in soup.find_all('meta'):
            name = meta.get('name') or meta.get('property')
            content = meta.get('content')
            if name and content:
                page.metadata[name] = self._clean_text(content)

    def _extract_main_content(self, soup: BeautifulSoup, page: ParsedPage):
        """Extract body text content."""
        content_element = soup.find('body') or soup
        text_content = content_element.get_text(separator=' ', strip=True)
        page.content = self._clean_text(text_content)

    def _extract_links(self, soup: BeautifulSoup, page: ParsedPage, base_url: str):
        """Extract absolute HTTP(S) links."""
        links = []
        seen = set()

        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if not href or href.startswith('#'):
                continue

            normalized_url = normalize_url(urljoin(base_url, href))
            if normalized_url and normalized_url not in seen:
                seen.add(normalized_url)
                links.append(normalized_url)

        page.links = links

    def _extract_price(self, soup: BeautifulSoup) -> Optional[str]:
        """Find a price by common selectors, then by a $xx.xx text pattern."""
        price_element = soup.select_one(self.PRICE_SELECTORS)
        if price_element is not None:
            return self._clean_text(price_element.get_text())

        text = soup.find(string=self.price_pattern)
        return self.price_pattern.search(text).group(0) if text else None

    def _extract_discount(self, soup: BeautifulSoup) -> Optional[str]:
        """Find a discount by common selectors, then by an "NN% off" text pattern."""
        discount_element = soup.select_one(self.DISCOUNT_SELECTORS)
        if discount_element is not None:
            return self._clean_text(discount_element.get_text())

        text = soup.find(string=self.discount_pattern)
        return self._clean_text(self.discount_pattern.search(text).group(0)) if text else None

    def _extract_products(self, soup: BeautifulSoup, page: ParsedPage, base_url: str):
        """Extract product cards from listing pages."""
        for item in soup.select(self.PRODUCT_SELECTOR):
            link = item.select_one('h3 a')
            name = ''
            if link is not None:
                name = link.get('title') or self._clean_text(link.get_text())

            price_element = item.select_one('.price_color')
            rating_element = item.select_one('p.star-rating')
            rating = ''
            if rating_element is not None:
                rating = next((cls for cls in rating_element.get('class', []) if cls != 'star-rating'), '')

            product = {
                'name': name,
                'price': self._clean_text(price_element.get_text()) if price_element else '',
                'availability': "In stock" if item.select_one('.instock.availability') else "Out of stock",
                'rating': rating,
                'buyers': RATING_TO_BUYERS.get(rating, "Unknown number of buyers"),
            }
            if link is not None and link.get('href'):
                product['url'] = urljoin(base_url, link['href'])

            page.products.append(product)

        if page.products:
            page.metadata['product_count'] = str(len(page.products))
            self.logger.info(f"Found {len(page.products)} products on page {base_url}")

    def _clean_text(self, text: str) -> str:
        """Clean and normalize text content."""
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text.strip())
