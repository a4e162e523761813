"""
URLs and selectors of the storefront under test.

The target is a PrestaShop 1.6 demo shop; every page is addressed through
``index.php?controller=...`` and the assertions rely on that parameter being
present.
"""

from typing import Dict

AUTHENTICATION_PATH = "/index.php?controller=authentication&back=my-account"
REGISTRATION_PATH = "/index.php?controller=authentication"
MY_ACCOUNT_PATH = "/index.php?controller=my-account"
ORDER_HISTORY_PATH = "/index.php?controller=history"
HOME_PATH = "/"

PAGES: Dict[str, str] = {
    "authentication": AUTHENTICATION_PATH,
    "registration": REGISTRATION_PATH,
    "my-account": MY_ACCOUNT_PATH,
    "order-history": ORDER_HISTORY_PATH,
    "home": HOME_PATH,
}

AUTHENTICATION_MARKER = "controller=authentication"
ACCOUNT_MARKER = "controller=my-account"
SEARCH_MARKER = "controller=search"

# Registration, step one (email capture)
CREATE_FORM = "#create-account_form"
EMAIL_CREATE = "#email_create"
SUBMIT_CREATE = "#SubmitCreate"
CREATE_ACCOUNT_ERROR = "#create_account_error"

# Registration, step two (expanded form)
ACCOUNT_CREATION_FORM = "#account-creation_form"
GENDER_RADIOS = {
    "male": "#id_gender1",
    "female": "#id_gender2",
}
FIRST_NAME = "#customer_firstname"
LAST_NAME = "#customer_lastname"
ACCOUNT_EMAIL = "#email"
DOB_DAY = "#days"
DOB_MONTH = "#months"
DOB_YEAR = "#years"
NEWSLETTER = "#newsletter"
SUBMIT_ACCOUNT = "#submitAccount"

# Login form
LOGIN_FORM = "#login_form"
LOGIN_EMAIL = "#email"
LOGIN_PASSWORD = "#passwd"
SUBMIT_LOGIN = "#SubmitLogin"
REMEMBER_ME = "#rememberme"
PASSWORD_TOGGLE = '[type="button"][onclick*="password"], .toggle-password'

# Page state
PAGE_HEADING = ".page-heading"
LOGOUT_LINK = "a.logout"
ACCOUNT_NAME = "a.account span"
ACCOUNT_INFO = ".info-account"
SUCCESS_BANNER = ".alert.alert-success"
ERROR_BANNER = ".alert.alert-danger:not(#create_account_error)"
ERROR_ITEMS = ".alert.alert-danger:not(#create_account_error) li"
WARNING_BANNER = ".alert.alert-warning"
INVALID_FIELD = "input[required]:invalid"

# Search
SEARCH_INPUT = "#search_query_top"
SEARCH_SUBMIT = 'button[name="submit_search"]'
PRODUCT_LISTING = ".product-listing"
PRODUCT_CONTAINER = ".product-container"
PRODUCT_NAME = ".product-container .product-name"
PRODUCT_TITLE = 'h1[itemprop="name"]'
PRODUCT_PRICE = ".right-block .content_price .product-price"
SORT_SELECT = "#selectProductSort"
ADD_TO_CART = ".ajax_add_to_cart_button"
LAYER_CART = "#layer_cart"
LAYER_CART_MESSAGE = "#layer_cart .layer_cart_product h2"
CONTINUE_SHOPPING = "#layer_cart .continue.btn"
CART_QUANTITY = ".shopping_cart .ajax_cart_quantity"

# Pagination under a product list; disabled arrows render as spans, not links
PAGINATION = "ul.pagination"
PAGINATION_NEXT = "ul.pagination li.pagination_next:not(.disabled) a"
PAGINATION_PREVIOUS = "ul.pagination li.pagination_previous:not(.disabled) a"


def is_authentication_url(url: str) -> bool:
    return AUTHENTICATION_MARKER in (url or "")


def is_search_url(url: str) -> bool:
    return SEARCH_MARKER in (url or "")


def pagination_link(number: int) -> str:
    return f'ul.pagination li:not(.active):not(.disabled) a:text-is("{number}")'
