"""Decide whether a scraped string looks like a board game title.

Pure string predicate; no I/O.
"""
from __future__ import annotations

import re

MIN_LENGTH = 3
MAX_LENGTH = 100
MAX_WORDS = 10

EXCLUDE_EXACT = frozenset(
    s.lower()
    for s in (
        # site chrome
        "menu", "home", "contact", "about", "cart", "search", "login", "logout", "register",
        "shop", "store", "buy", "sell", "view", "more", "read more", "learn more", "view all",
        "subscribe", "newsletter", "sign up", "sign in", "follow", "share", "like",
        "facebook", "instagram", "twitter", "youtube", "tiktok", "pinterest",
        "privacy", "policy", "terms", "conditions", "faq", "help", "support",
        "checkout", "shipping", "returns", "refund", "wishlist", "favorites",
        "all products", "all games", "new arrivals", "best sellers", "on sale",
        "gift card", "gift certificate", "e-gift card",
        "recent posts", "recent comments", "archives", "categories", "tags",
        "leave a comment", "post comment", "comments", "sidebar",
        "spring menu", "summer menu", "fall menu", "winter menu", "food menu",
        "drinks menu", "beverage menu", "snacks", "appetizers", "desserts",
        "navigation", "footer", "header", "copyright", "sitemap",
        "our story", "about us", "our team", "careers", "jobs",
        "blog", "news", "events", "gallery", "photos",
        # Vietnamese site chrome
        "giới thiệu", "trang", "trang chủ", "liên hệ", "ảnh", "hình ảnh", "video",
        "đăng nhập", "đăng ký", "đăng xuất", "tìm kiếm", "giỏ hàng", "thanh toán",
        "sản phẩm", "dịch vụ", "tin tức", "bài viết", "thông tin", "chi tiết",
        "xem thêm", "đọc thêm", "tất cả", "danh mục", "chuyên mục",
        "theo dõi", "chia sẻ", "thích", "bình luận", "đánh giá",
        "địa chỉ", "số điện thoại", "email", "hotline", "zalo",
        "chính sách", "điều khoản", "bảo mật", "hỗ trợ", "câu hỏi",
        "giá", "khuyến mãi", "giảm giá", "freeship", "miễn phí",
        "mua ngay", "thêm vào giỏ", "đặt hàng", "mua hàng",
        "bảng giá", "menu đồ uống", "thực đơn",
        # food and drink
        "coffee", "tea", "latte", "cappuccino", "espresso", "americano", "mocha",
        "smoothie", "juice", "soda", "water", "beer", "wine", "cocktail",
        "sandwich", "burger", "pizza", "pasta", "salad", "soup", "fries",
        "cake", "cookie", "brownie", "muffin", "croissant", "donut", "ice cream",
        "breakfast", "lunch", "dinner", "brunch", "appetizer", "entree", "dessert",
        "cà phê", "cafe", "trà", "trà sữa", "sinh tố", "nước ép", "nước ngọt",
        "bánh mì", "bánh ngọt", "bánh kem", "kem", "bánh quy", "bánh flan",
        "phở", "bún", "mì", "cơm", "xôi", "chè", "sữa chua",
        "nước suối", "nước khoáng", "bia", "rượu",
        "đồ ăn", "đồ uống", "thức ăn", "thức uống", "món ăn", "món uống",
        "topping", "size", "đá", "nóng", "lạnh", "ít đường", "không đường",
    )
)

EXCLUDE_SUBSTRINGS = (
    "currently unavailable", "out of stock", "sold out", "coming soon",
    "online store", "follow us", "subscribe to", "join our", "sign up for",
    "free shipping", "% off", "discount", "promo", "coupon",
    "copyright", "all rights reserved", "©",
    "click here", "tap here", "learn more", "read more",
    "newsletter", "email us", "contact us", "call us",
    "social media", "connect with", "stay connected",
    "gift card", "e-gift", "voucher",
    "sleeve", "dice bag", "playmat", "card holder", "accessory",
    "t-shirt", "shirt", "mug", "poster", "merchandise",
    "add to cart", "buy now", "shop now", "view cart",
    "customer service", "track order", "my account",
    "powered by", "built with", "designed by",
    "recent posts", "recent comments", "leave a reply", "post a comment",
    "no comments", "comments are closed", "tagged with", "filed under",
    "continue reading", "older posts", "newer posts",
    "spring menu", "summer menu", "fall menu", "winter menu", "seasonal menu",
    "food & drink", "our menu", "view menu",
    "our location", "find us", "get directions", "hours of operation",
    "opening hours", "business hours", "we are open", "we are closed",
    "reservation", "book a table", "book now", "make a reservation",
    "iced coffee", "hot coffee", "cold brew", "matcha latte", "green tea",
    "french fries", "onion rings", "chicken wings", "fish and chips",
    "grilled cheese", "club sandwich", "caesar salad", "tomato soup",
    "chocolate cake", "cheesecake", "apple pie", "vanilla ice",
    "trà đào", "trà vải", "trà chanh", "trà xanh", "hồng trà",
    "cà phê sữa", "cà phê đen", "bạc xỉu", "cà phê đá",
    "bánh tráng", "bánh cuốn", "bánh bao", "bánh xèo",
    "gà rán", "cánh gà", "khoai tây chiên", "xúc xích",
    "combo ", " combo", "set ", " set", "phần ", " phần",
)

_SUFFIX_KEYWORDS = frozenset(p.split()[0] for p in EXCLUDE_SUBSTRINGS if p.split())

EXCLUDE_PREFIXES = ("*", "#", "$")
NOISY_SUFFIXES = ("...", "!", "?", "→", "›", "»")

_NUMERIC_ONLY = re.compile(r"^[\d.,\s]+(K|M|k|m|tr|triệu|nghìn|ngàn)?$")
_PRICE = re.compile(
    r"^(?:[$€£₫đ]|vnd|vnđ|usd|eur)?\s*\d[\d.,\s]*\s*(?:[$€£₫đ]|vnd|vnđ|usd|eur|k)?$",
    re.IGNORECASE,
)


def is_plausible_item_name(name: str | None) -> bool:
    if not name or not name.strip():
        return False
    trimmed = name.strip()

    if not MIN_LENGTH <= len(trimmed) <= MAX_LENGTH:
        return False

    lowered = trimmed.lower()
    if lowered in EXCLUDE_EXACT:
        return False
    if any(p in lowered for p in EXCLUDE_SUBSTRINGS):
        return False
    if trimmed.startswith(EXCLUDE_PREFIXES):
        return False

    alnum = sum(1 for ch in trimmed if ch.isalnum())
    if alnum < len(trimmed) * 0.5:
        return False

    # "4,2K" follower counts, "2024", bare prices
    if _NUMERIC_ONLY.match(trimmed):
        return False
    if _PRICE.match(trimmed):
        return False

    digits = sum(1 for ch in trimmed if ch.isdigit())
    letters = sum(1 for ch in trimmed if ch.isalpha())
    if digits > 0 and letters == 0:
        return False
    if digits > letters and len(trimmed) < 10:
        return False

    # "Follow us!" style calls to action; "Uno!" survives
    if trimmed.endswith(NOISY_SUFFIXES):
        words = trimmed.rstrip(".!?→›» ").lower().split()
        if len(words) <= 2 and any(w in _SUFFIX_KEYWORDS for w in words):
            return False

    if len(trimmed.split()) > MAX_WORDS:
        return False

    return True
