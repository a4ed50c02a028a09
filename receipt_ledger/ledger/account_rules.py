"""
Built-in account mapping tables.

Categories here are business-relative ("Food:Coffee"); the mapper places
them under the account-type root and business ("Expenses:Personal:Food:Coffee").
Taxes are the one exception and always land under "Expenses:Taxes".

Description rules are ordered: the first matching rule wins, so the more
specific rules come first. Every pattern is anchored at a word start so
that "steak" does not match the tea rule.
"""

import re
from typing import Optional

from receipt_ledger.models.ledger import (
    ACCOUNT_TYPE_ROOTS,
    AccountPattern,
    AccountType,
    AccountTypePattern,
    BusinessContext,
    MatchType,
    UserMapping,
    VendorMapping,
)
from receipt_ledger.services.storage.interface import MappingTableInterface


TAX_CATEGORY_PREFIX = "Taxes:"


# =============================================================================
# DESCRIPTION RULES
# =============================================================================

DESCRIPTION_CATEGORY_RULES: list[tuple[str, str]] = [
    # Income
    (r"salary|wage|payroll|employment", "Employment:Salary"),
    (r"freelanc\w*|contracting", "Freelance:Services"),
    (r"consult\w*|professional\s*service", "Professional:Consulting"),
    (r"dividend|interest|capital\s*gains", "Investment:Returns"),
    (r"rent\s*income|rental\s*income|property\s*income", "Rental:Income"),
    (r"business\s*income|revenue", "Business:Revenue"),

    # Liabilities
    (r"student\s*loan|education\s*loan", "Debt:Education"),
    (r"car\s*loan|auto\s*loan|vehicle\s*loan", "Debt:Vehicle"),
    (r"home\s*loan|house\s*loan|mortgage", "Debt:Mortgage"),
    (r"credit\s*card|debt|loan", "Debt:CreditCard"),

    # Professional services
    (r"legal|lawyer|attorney|law\s*firm", "Professional:Legal"),
    (r"architect\w*|design\s*service", "Professional:Architecture"),
    (r"accountant|accounting|bookkeeping", "Professional:Accounting"),

    # Utilities and housing
    (r"condo\s*fee|management\s*fee|maintenance\s*fee", "Housing:Fees"),
    (r"rent|rental", "Housing:Rent"),
    (r"electricity|electric\s*bill|power\s*bill", "Utilities:Electricity"),
    (r"water\s*bill", "Utilities:Water"),
    (r"internet|wifi|broadband", "Utilities:Internet"),
    (r"phone\s*bill|mobile\s*bill", "Utilities:Phone"),

    # Financial services
    (r"bank\s*fee|banking\s*fee|atm\s*fee|transfer\s*fee", "Financial:Fees"),
    (r"cash\s*withdrawal|money\s*transfer", "Financial:Transfer"),
    (r"insurance", "Financial:Insurance"),

    # Electronics and shopping
    (r"iphone|ipad|macbook|apple\s*watch|airpods", "Electronics:Apple"),
    (r"itunes|app\s*store", "Subscription:Apple"),
    (r"pixel\s*(?:phone|buds|tablet)|google\s*(?:nest|home)", "Electronics:Google"),
    (r"samsung\s*(?:galaxy|buds|tablet)|android\s*phone", "Electronics:Mobile"),
    (r"laptop|notebook\s*computer|ultrabook|computer|desktop", "Electronics:Laptops"),
    (r"headphones?|earbuds?|speakers?|bluetooth", "Electronics:Audio"),
    (r"phone\s*case|phone\s*accessor\w*", "Electronics:Phone"),
    (r"usb|charger|power\s*bank|cable|adapter", "Electronics:Accessories"),
    (r"electronics?|gadgets?", "Electronics"),
    (r"lazada|shopee|online\s*shopping", "Shopping:Online"),
    (r"jewelry|purse|handbag", "Shopping:Accessories"),
    (r"furniture|home\s*decor", "Shopping:Home"),

    # Regional food
    (r"pad\s*thai|som\s*tam|tom\s*yum|mango\s*sticky\s*rice", "Food:Thai"),
    (r"instant\s*noodles|mama\s*noodles", "Food:Noodles:Instant"),
    (r"street\s*food|food\s*court", "Food:Dining:StreetFood"),
    (r"japanese|sushi|ramen|sashimi", "Food:Japanese"),
    (r"korean|kimchi|bulgogi", "Food:Korean"),
    (r"chinese|dim\s*sum|fried\s*rice", "Food:Chinese"),
    (r"indian|curry|biryani", "Food:Indian"),

    # Beverages
    (r"bubble\s*tea|boba|thai\s*tea|milk\s*tea", "Food:Beverages:BubbleTea"),
    (r"smoothie|juice", "Food:Beverages:Smoothie"),
    (r"coconut\s*water", "Food:Beverages:CoconutWater"),
    (r"tea|matcha|oolong|earl\s*grey", "Food:Tea"),
    (r"beer|ale|lager|stout|pilsner", "Food:Beer"),
    (r"wine|champagne", "Food:Wine"),

    # Health and personal care
    (r"doctor|clinic|hospital|medical", "Health:Medical"),
    (r"dentist|dental", "Health:Dental"),
    (r"pharmacy|medicine|vitamins?|supplements?", "Health:Pharmacy"),
    (r"massage|spa|salon|haircut|nails", "Personal:Care"),
    (r"skincare|cosmetics|makeup", "Personal:Toiletries"),
    (r"gym|fitness|personal\s*training", "Health:Fitness"),
    (r"dry\s*cleaning|laundry", "Personal:Services"),

    # Dairy
    (r"peanut\s*butter|nut\s*butter|almond\s*butter", "Food:Pantry:NutButter"),
    (r"butter|margarine|ghee", "Food:Dairy:Butter"),
    (r"eggs?", "Food:Dairy:Eggs"),
    (r"milk|almond\s*milk|soy\s*milk", "Food:Dairy:Milk"),
    (r"cheese|cheddar|mozzarella|parmesan|brie|gouda", "Food:Dairy:Cheese"),
    (r"yogh?urt", "Food:Dairy:Yogurt"),
    (r"cream|sour\s*cream", "Food:Dairy:Cream"),

    # Meat
    (r"beef|steak|burger|mince", "Food:Meat:Beef"),
    (r"chicken|poultry", "Food:Meat:Chicken"),
    (r"pork|bacon|ham", "Food:Meat:Pork"),
    (r"fish|salmon|tuna|shrimp|prawn|seafood", "Food:Meat:Seafood"),
    (r"meat", "Food:Meat"),

    # Grains
    (r"bread|toast|buns?|rolls?", "Food:Grains:Bread"),
    (r"rice|basmati|jasmine", "Food:Grains:Rice"),
    (r"pasta|spaghetti|penne|macaroni|noodles?", "Food:Grains:Pasta"),
    (r"oats?|oatmeal|porridge", "Food:Grains:Oats"),
    (r"cereal", "Food:Grains:Cereal"),

    # Education
    (r"school\s*uniform|uniform", "Education:Uniforms"),
    (r"textbook|school\s*book|workbook|stationer(?:y|ies)", "Education:BooksSupplies"),
    (r"field\s*trip|excursion", "Education:Activities"),
    (r"after[-\s]?school|extracurricular|club\s*fee", "Education:AfterSchool"),
    (r"school|tuition|education|enrol?l?ment|registration\s*fee", "Education:Tuition"),

    # Pantry
    (r"jam|jelly|marmalade", "Food:Pantry:Jam"),
    (r"honey|syrup", "Food:Pantry:Sweeteners"),
    (r"olive\s*oil|vegetable\s*oil|cooking\s*oil", "Food:Pantry:Oils"),
    (r"vinegar|balsamic", "Food:Pantry:Vinegars"),
    (r"sauce|ketchup|mustard|mayonnaise|condiment", "Food:Pantry:Condiments"),

    # Vegetables
    (r"lettuce|salad|greens|spinach|kale", "Food:Vegetables:Leafy"),
    (r"tomato(?:es)?", "Food:Vegetables:Tomatoes"),
    (r"onions?|garlic|shallots?|leeks?", "Food:Vegetables:Alliums"),
    (r"carrots?", "Food:Vegetables:Carrots"),
    (r"bell\s*peppers?|chili|jalapeno", "Food:Vegetables:Peppers"),
    (r"broccoli|cauliflower|cabbage", "Food:Vegetables:Cruciferous"),
    (r"beans?|legumes?|lentils?|chickpeas?", "Food:Vegetables:Legumes"),
    (r"veg|vegetables?|potato(?:es)?|cucumber", "Food:Vegetables"),

    # Snacks and fruit
    (r"ice\s*cream|chocolate|candy", "Food:Snacks:Sweet"),
    (r"chips|crackers|cookies|biscuits?", "Food:Snacks:Savory"),
    (r"seaweed|nuts|dried\s*fruit", "Food:Snacks:Healthy"),
    (r"bananas?", "Food:Fruit:Bananas"),
    (r"oranges?|mandarins?|tangerines?|lemons?|limes?", "Food:Fruit:Citrus"),
    (r"grapes?", "Food:Fruit:Grapes"),
    (r"mango(?:es)?", "Food:Fruit:Mangoes"),
    (r"berry|berries|strawberr\w*|blueberr\w*|raspberr\w*", "Food:Fruit:Berries"),
    (r"apples?|pears?|peach(?:es)?|kiwis?|melons?|papayas?|pineapples?|fruits?", "Food:Fruit"),

    # Dining
    (r"restaurant|dine|meal|lunch|dinner|breakfast|snack|takeaway|take\s*out", "Food:Dining"),
    (r"pastr(?:y|ies)|cake|donut|croissant|muffin|bagel|scone", "Food:Bakery"),
    (r"groceries|grocery", "Food:Groceries"),
    (r"mug|cup|glass|plate|bowl|utensil|fork|spoon|knife", "Household:Kitchenware"),
    (r"coffee|latte|espresso|americano|cappuccino", "Food:Coffee"),

    # Transport
    (r"grab|uber|taxi|ride\s*hailing", "Transport:RideHailing"),
    (r"bts|mrt|skytrain|subway|metro", "Transport:PublicTransit"),
    (r"motorbike\s*taxi|motorcycle\s*taxi", "Transport:MotorbikeTaxi"),
    (r"bus", "Transport:Bus"),
    (r"car\s*wash|repair|tires", "Transport:Maintenance"),
    (r"motorbike|motorcycle|automobile", "Transport:PersonalVehicle"),
    (r"tuk\s*tuk|boat|ferry|airport\s*link", "Transport:Specialty"),
    (r"flight|airline|plane", "Transport:Air"),
    (r"hotel|accommodation", "Transport:Accommodation"),
    (r"gas|fuel|petrol|diesel|gasoline", "Transport:Fuel"),
    (r"parking|toll|tollway|easypass", "Transport:Fees"),

    # Subscriptions
    (r"netflix|spotify|youtube\s*premium|disney\s*plus|apple\s*music", "Subscription:Entertainment"),
    (r"supabase|vercel|netlify|aws|digital\s*ocean", "Subscription:Infrastructure"),
    (r"subscription|saas|software|hosting|domain", "Subscription:Software"),

    # Business and household
    (r"napkins?|packaging|disposables?", "Supplies:Packaging"),
    (r"supplies|inventory|materials", "Supplies"),
    (r"marketing|advertising|ads|promotion", "Marketing:Advertising"),
    (r"towels?|linen|sheets|blankets?|pillows?", "Household:HomeGoods"),
    (r"detergent|cleaner|soap|shampoo|toothpaste|toilet\s*paper", "Household:Supplies"),
    (r"shirt|pants|jeans|dress|skirt|jacket|shoes?|sneakers?|socks?|clothing|clothes", "Clothing"),
    (r"movie|cinema|game|concert", "Entertainment"),

    # Taxes
    (r"^tax$", "Taxes:Sales"),
]


# =============================================================================
# VENDOR TABLES
# =============================================================================

VENDOR_EXACT: list[tuple[str, str]] = [
    ("grab", "Transport:RideHailing"),
    ("bts", "Transport:PublicTransit"),
    ("mrt", "Transport:PublicTransit"),
    ("starbucks", "Food:Coffee"),
    ("7-eleven", "Food:Groceries"),
    ("netflix", "Subscription:Entertainment"),
    ("spotify", "Subscription:Entertainment"),
]

# (label, vendor regex, category)
VENDOR_PATTERNS: list[tuple[str, str, str]] = [
    ("7-eleven", r"7\s*eleven|7-?11", "Food:Groceries"),
    ("villa market", r"villa\s*market", "Food:Groceries"),
    ("big c", r"big\s*c\b", "Food:Groceries"),
    ("lotus", r"lotus", "Food:Groceries"),
    ("cafe amazon", r"amazon\s*coffee|cafe\s*amazon", "Food:Coffee"),
    ("starbucks", r"starbucks", "Food:Coffee"),
    ("blue bottle", r"blue\s*bottle", "Food:Coffee"),
    ("grab", r"grab", "Transport:RideHailing"),
    ("uber", r"uber", "Transport:RideHailing"),
    ("kasikorn", r"kasikorn|k\s*bank", "Financial:Banking"),
    ("bangkok bank", r"bangkok\s*bank", "Financial:Banking"),
    ("walmart", r"walmart", "Food:Groceries"),
    ("costco", r"costco", "Food:Groceries"),
    ("lazada", r"lazada", "Shopping:Online"),
    ("youtube premium", r"youtube\s*(?:premium|red)", "Subscription:Entertainment"),
    ("disney plus", r"disney\s*(?:plus|\+)", "Subscription:Entertainment"),
    ("apple music", r"apple\s*music", "Subscription:Entertainment"),
    ("amazon prime", r"amazon\s*prime|prime\s*video", "Subscription:Entertainment"),
    ("hbo", r"hbo(?:\s*max|\s*go)?", "Subscription:Entertainment"),
]


# =============================================================================
# ACCOUNT TYPE PATTERNS
# =============================================================================

ACCOUNT_TYPE_RULES: list[tuple[str, AccountType, float]] = [
    (r"\b(?:loan|mortgage|credit\s*card|debt)\b", AccountType.LIABILITY, 0.8),
    (r"\b(?:salary|wages?|payroll|dividends?|rental\s*income|interest\s*income)\b", AccountType.INCOME, 0.85),
    (r"\b(?:deposit|savings|investment)\b", AccountType.ASSET, 0.7),
    (r"\b(?:owner\s*contribution|capital|opening\s*balance)\b", AccountType.EQUITY, 0.7),
]


# =============================================================================
# PATH RESOLUTION
# =============================================================================

def is_absolute_account(path: str) -> bool:
    """True when the path already starts at an account-type root."""
    return path.split(":", 1)[0] in ACCOUNT_TYPE_ROOTS.values()


def account_from_category(
    category: str,
    business: str,
    account_type: AccountType = AccountType.EXPENSE,
) -> str:
    """
    Place a business-relative category under its root and business.

    Absolute paths are returned unchanged; taxes are never business-scoped.
    """
    if is_absolute_account(category):
        return category
    if category.startswith(TAX_CATEGORY_PREFIX):
        return f"{AccountType.EXPENSE.root}:{category}"
    return f"{account_type.root}:{business}:{category}"


def category_of(account: str) -> Optional[str]:
    """Business-relative part of a full account path ('Expenses:Personal:Food:Fruit' -> 'Food:Fruit')."""
    parts = account.split(":")
    if len(parts) < 3:
        return None
    return ":".join(parts[2:])


def account_type_of(account: str, default: AccountType = AccountType.EXPENSE) -> AccountType:
    root = account.split(":", 1)[0]
    for account_type, name in ACCOUNT_TYPE_ROOTS.items():
        if name == root:
            return account_type
    return default


def compile_rule(pattern: str) -> re.Pattern:
    """Case-insensitive regex anchored at a word start."""
    return re.compile(rf"\b(?:{pattern})", re.IGNORECASE)


# =============================================================================
# STATIC TABLES
# =============================================================================

class StaticMappingTables(MappingTableInterface):
    """
    MappingTableInterface over the built-in rules.

    Used when no spreadsheet is configured, and in tests. Extra user
    mappings and business contexts can be passed in.
    """

    def __init__(
        self,
        user_mappings: Optional[list[UserMapping]] = None,
        business_contexts: Optional[list[BusinessContext]] = None,
    ):
        self._user_mappings = list(user_mappings or [])
        self._business_contexts = {
            context.business_name: context
            for context in (business_contexts or [BusinessContext(business_name="Personal")])
        }
        count = len(DESCRIPTION_CATEGORY_RULES)
        # Earlier rules win, so they get the higher priority
        self._patterns = [
            AccountPattern(
                pattern=pattern,
                account_path=category,
                match_type=MatchType.REGEX,
                priority=count - index,
            )
            for index, (pattern, category) in enumerate(DESCRIPTION_CATEGORY_RULES)
        ]
        self._vendors = [
            VendorMapping(vendor_name=name, account_path=category)
            for name, category in VENDOR_EXACT
        ] + [
            VendorMapping(vendor_name=name, vendor_pattern=pattern, account_path=category)
            for name, pattern, category in VENDOR_PATTERNS
        ]
        self._type_patterns = [
            AccountTypePattern(
                pattern=pattern,
                account_type=account_type,
                confidence=confidence,
                priority=len(ACCOUNT_TYPE_RULES) - index,
            )
            for index, (pattern, account_type, confidence) in enumerate(ACCOUNT_TYPE_RULES)
        ]

    async def get_user_mappings(self, user_id: Optional[str] = None) -> list[UserMapping]:
        return [
            mapping for mapping in self._user_mappings
            if user_id is None or mapping.user_id in (None, user_id)
        ]

    async def get_vendor_mappings(self) -> list[VendorMapping]:
        return list(self._vendors)

    async def get_account_patterns(
        self,
        business: Optional[str] = None,
    ) -> list[AccountPattern]:
        return [
            pattern for pattern in self._patterns
            if pattern.business_context in (None, business)
        ]

    async def get_business_context(self, business: str) -> Optional[BusinessContext]:
        return self._business_contexts.get(business)

    async def get_account_type_patterns(self) -> list[AccountTypePattern]:
        return list(self._type_patterns)
