from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from carrierflow.core.errors import UnknownOperator

DEFAULT_CHECKOUT_URL = "http://checkout.sla-alacrity.com/purchase"
MSISDN_CHECKOUT_URL = "http://msisdn.sla-alacrity.com/purchase"
ZAIN_API_BASE = "https://api.sla-alacrity.com/api/alacrity/v2.2"

DEFAULT_API_BASES = {
    "sandbox": "https://api-sandbox.sla-alacrity.com/v2.2",
    "production": "https://api.sla-alacrity.com/v2.2",
    "preproduction": "https://api-preprod.sla-alacrity.com/v2.2",
}

DEFAULT_TEST_PIN = "000000"


class ProtocolVariant(str, Enum):
    CODE_VERIFY = "code-verify"
    REDIRECT_CHECKOUT = "redirect-checkout"
    REDIRECT_ANON_REF = "redirect-with-anonymous-reference"
    REDIRECT_OR_CODE = "redirect-or-code"
    CODE_WITH_FRAUD_CHECK = "code-with-fraud-check"
    REDIRECT_ASYNC = "redirect-async"


class IdentifierFormat(str, Enum):
    PHONE_NUMBER = "phone-number"
    ANONYMOUS_TOKEN = "anonymous-token"
    ANONYMOUS_REFERENCE = "anonymous-reference"


CODE_VARIANTS = {
    ProtocolVariant.CODE_VERIFY,
    ProtocolVariant.REDIRECT_OR_CODE,
    ProtocolVariant.CODE_WITH_FRAUD_CHECK,
}

CHECKOUT_VARIANTS = {
    ProtocolVariant.REDIRECT_CHECKOUT,
    ProtocolVariant.REDIRECT_ANON_REF,
    ProtocolVariant.REDIRECT_OR_CODE,
    ProtocolVariant.REDIRECT_ASYNC,
}


@dataclass(frozen=True)
class EnvironmentOverride:
    base_url: Optional[str] = None
    checkout_url: Optional[str] = None
    test_pin: Optional[str] = None
    test_msisdn: Optional[str] = None


@dataclass(frozen=True)
class OperatorCapability:
    operator_id: str
    name: str
    country: str
    currency: str
    variant: ProtocolVariant
    identifier_format: IdentifierFormat = IdentifierFormat.PHONE_NUMBER
    code_length: Optional[int] = 5
    max_charge: Optional[float] = None
    daily_limit: Optional[float] = None
    monthly_limit: Optional[float] = None
    languages: Tuple[str, ...] = ("en",)
    short_code: Optional[str] = None
    checkout_url: Optional[str] = None

    requires_correlation_id: bool = False
    requires_transaction_id: bool = False
    supports_messaging: bool = True
    requires_fraud_token: bool = False
    delete_unsupported: bool = False
    requires_amount: bool = False

    # "SUCCESS" is this vendor's word for CHARGED
    alternate_success_vocabulary: bool = False
    suspend_on_insufficient_funds: bool = False
    # completion only ever arrives through a webhook
    webhook_deferred: bool = False
    is_async: bool = False
    no_trial_support: bool = False
    no_landing_page: bool = False
    dynamic_messaging: bool = False

    anonymous_reference_prefix: Optional[str] = None
    anonymous_reference_length: Optional[int] = None

    environments: Dict[str, EnvironmentOverride] = field(default_factory=dict)

    @property
    def is_asynchronous(self) -> bool:
        return self.webhook_deferred or self.is_async


_ZAIN_ENVIRONMENTS = {
    "sandbox": EnvironmentOverride(ZAIN_API_BASE, "http://msisdn-sandbox.sla-alacrity.com/purchase"),
    "production": EnvironmentOverride(ZAIN_API_BASE, "https://msisdn.sla-alacrity.com/purchase"),
}


def _uk(operator_id: str, name: str) -> OperatorCapability:
    return OperatorCapability(
        operator_id=operator_id, name=name, country="United Kingdom", currency="GBP",
        variant=ProtocolVariant.REDIRECT_CHECKOUT,
        code_length=None,
        requires_correlation_id=True,
        supports_messaging=False,
        webhook_deferred=True,
    )


def _telenor(operator_id: str, name: str, country: str, currency: str, **limits) -> OperatorCapability:
    return OperatorCapability(
        operator_id=operator_id, name=name, country=country, currency=currency,
        variant=ProtocolVariant.REDIRECT_ANON_REF,
        identifier_format=IdentifierFormat.ANONYMOUS_REFERENCE,
        requires_correlation_id=True,
        anonymous_reference_prefix="telenor-",
        anonymous_reference_length=48,
        **limits,
    )


def _build_table() -> Dict[str, OperatorCapability]:
    ops: List[OperatorCapability] = [
        _uk("vodafone-uk", "Vodafone UK"),
        _uk("three-uk", "Three UK"),
        _uk("o2-uk", "O2 UK"),
        _uk("ee-uk", "EE UK"),

        _telenor("telenor-mm", "Telenor Myanmar", "Myanmar", "MMK", max_charge=10000),
        _telenor("telenor-dk", "Telenor Denmark", "Denmark", "DKK",
                 max_charge=5000, monthly_limit=2500, daily_limit=750),
        _telenor("telenor-no", "Telenor Norway", "Norway", "NOK", max_charge=5000, monthly_limit=5000),
        _telenor("telenor-se", "Telenor Sweden", "Sweden", "SEK", max_charge=5000),
        _telenor("telenor-rs", "Yettel Serbia", "Serbia", "RSD",
                 max_charge=960, daily_limit=2400, monthly_limit=4800),
        OperatorCapability(
            operator_id="telenor-digi", name="Telenor Digi", country="Malaysia", currency="MYR",
            variant=ProtocolVariant.REDIRECT_OR_CODE,
            max_charge=100, monthly_limit=300,
        ),

        OperatorCapability(
            operator_id="zain-kw", name="Zain Kuwait", country="Kuwait", currency="KWD",
            variant=ProtocolVariant.REDIRECT_CHECKOUT,
            code_length=4, max_charge=30, monthly_limit=90, languages=("en", "ar"), short_code="93052",
            checkout_url=MSISDN_CHECKOUT_URL,
            alternate_success_vocabulary=True,
            suspend_on_insufficient_funds=True,
            environments=_ZAIN_ENVIRONMENTS,
        ),
        OperatorCapability(
            operator_id="zain-sa", name="Zain KSA", country="Saudi Arabia", currency="SAR",
            variant=ProtocolVariant.REDIRECT_CHECKOUT,
            code_length=6, max_charge=30, monthly_limit=30, languages=("ar",),
            checkout_url=MSISDN_CHECKOUT_URL,
            alternate_success_vocabulary=True,
            environments=_ZAIN_ENVIRONMENTS,
        ),
        OperatorCapability(
            operator_id="zain-bh", name="Zain Bahrain", country="Bahrain", currency="BHD",
            variant=ProtocolVariant.CODE_VERIFY,
            max_charge=30, monthly_limit=30, languages=("en", "ar"), short_code="94005",
            checkout_url=MSISDN_CHECKOUT_URL,
            environments={
                "sandbox": EnvironmentOverride(
                    ZAIN_API_BASE, "http://msisdn-sandbox.sla-alacrity.com/purchase",
                    test_pin="000000", test_msisdn="97312345678",
                ),
                "production": _ZAIN_ENVIRONMENTS["production"],
                "preproduction": EnvironmentOverride(
                    "https://api-pp.sla-alacrity.com/api/alacrity/v2.2",
                    "https://msisdn-pp.sla-alacrity.com/purchase",
                ),
            },
        ),
        OperatorCapability(
            operator_id="zain-jo", name="Zain Jordan", country="Jordan", currency="JOD",
            variant=ProtocolVariant.CODE_VERIFY,
            languages=("en", "ar"), short_code="97970",
            checkout_url=MSISDN_CHECKOUT_URL,
            environments=_ZAIN_ENVIRONMENTS,
        ),
        OperatorCapability(
            operator_id="zain-iq", name="Zain Iraq", country="Iraq", currency="IQD",
            variant=ProtocolVariant.REDIRECT_CHECKOUT,
            max_charge=88000, monthly_limit=88000,
        ),
        OperatorCapability(
            operator_id="zain-sd", name="Zain Sudan", country="Sudan", currency="SDG",
            variant=ProtocolVariant.REDIRECT_CHECKOUT,
            max_charge=30,
        ),

        OperatorCapability(
            operator_id="axiata-lk", name="Axiata Dialog", country="Sri Lanka", currency="LKR",
            variant=ProtocolVariant.REDIRECT_ASYNC,
            checkout_url="https://checkout.sla-alacrity.com/purchase/axiata",
            requires_transaction_id=True,
            is_async=True,
            no_trial_support=True,
        ),
        OperatorCapability(
            operator_id="mobily-sa", name="Mobily KSA", country="Saudi Arabia", currency="SAR",
            variant=ProtocolVariant.CODE_WITH_FRAUD_CHECK,
            languages=("ar",),
            requires_fraud_token=True,
            delete_unsupported=True,
            dynamic_messaging=True,
        ),
        OperatorCapability(
            operator_id="ooredoo-kw", name="Ooredoo Kuwait", country="Kuwait", currency="KWD",
            variant=ProtocolVariant.REDIRECT_OR_CODE,
            code_length=4, languages=("en", "ar"),
            requires_amount=True,
        ),
        OperatorCapability(
            operator_id="stc-kw", name="STC Kuwait", country="Kuwait", currency="KWD",
            variant=ProtocolVariant.REDIRECT_CHECKOUT,
            max_charge=20, monthly_limit=90,
        ),
        OperatorCapability(
            operator_id="etisalat-ae", name="Etisalat UAE", country="United Arab Emirates", currency="AED",
            variant=ProtocolVariant.REDIRECT_CHECKOUT,
            monthly_limit=1000, short_code="1090",
            no_landing_page=True,
        ),

        OperatorCapability(
            operator_id="9mobile-ng", name="9mobile", country="Nigeria", currency="NGN",
            variant=ProtocolVariant.REDIRECT_CHECKOUT,
        ),
        OperatorCapability(
            operator_id="movitel-mz", name="Movitel", country="Mozambique", currency="MZN",
            variant=ProtocolVariant.REDIRECT_CHECKOUT,
        ),
        OperatorCapability(
            operator_id="three-ie", name="Three Ireland", country="Ireland", currency="EUR",
            variant=ProtocolVariant.REDIRECT_CHECKOUT,
            max_charge=50, monthly_limit=150,
        ),
        OperatorCapability(
            operator_id="vodafone-ie", name="Vodafone Ireland", country="Ireland", currency="EUR",
            variant=ProtocolVariant.CODE_VERIFY,
            max_charge=30, daily_limit=30, monthly_limit=60, short_code="50082",
        ),
        OperatorCapability(
            operator_id="umobile-my", name="U Mobile Malaysia", country="Malaysia", currency="MYR",
            variant=ProtocolVariant.REDIRECT_OR_CODE,
            max_charge=300, monthly_limit=300, daily_limit=250,
        ),
    ]
    return {op.operator_id: op for op in ops}


OPERATORS: Dict[str, OperatorCapability] = _build_table()


def capabilities_of(operator_id: str) -> OperatorCapability:
    cap = OPERATORS.get((operator_id or "").strip().lower())
    if cap is None:
        raise UnknownOperator(f"Unknown operator: {operator_id}", operator=operator_id)
    return cap


def operators_by_country(country: str) -> List[OperatorCapability]:
    return [op for op in OPERATORS.values() if op.country == country]


def operators_by_variant(variant: ProtocolVariant) -> List[OperatorCapability]:
    return [op for op in OPERATORS.values() if op.variant == ProtocolVariant(variant)]


def supports_code_flow(operator_id: str) -> bool:
    return capabilities_of(operator_id).variant in CODE_VARIANTS


def supports_checkout(operator_id: str) -> bool:
    return capabilities_of(operator_id).variant in CHECKOUT_VARIANTS


def checkout_base_url(operator_id: str, environment: str) -> str:
    """Operator's environment override first, then its fixed URL, then the shared checkout host."""
    cap = capabilities_of(operator_id)
    env = cap.environments.get(environment)
    if env and env.checkout_url:
        return env.checkout_url
    return cap.checkout_url or DEFAULT_CHECKOUT_URL


def api_base_url(operator_id: Optional[str], environment: str) -> str:
    if operator_id:
        env = capabilities_of(operator_id).environments.get(environment)
        if env and env.base_url:
            return env.base_url
    return DEFAULT_API_BASES.get(environment, DEFAULT_API_BASES["production"])


def sandbox_credentials(operator_id: str) -> dict:
    env = capabilities_of(operator_id).environments.get("sandbox")
    if env and (env.test_pin or env.test_msisdn):
        return {"testPin": env.test_pin or DEFAULT_TEST_PIN, "testMsisdn": env.test_msisdn}
    return {"testPin": DEFAULT_TEST_PIN, "testMsisdn": None}
