"""Models package."""

from .user import User
from .credit_balance import CreditBalance
from .credit_ledger import CreditLedger, LedgerEntryKind
from .tuning_option import TuningOption
from .vehicle import Manufacturer, VehicleModel
from .tuning_request import TuningRequest, TuningRequestOption, TuningRequestStatus
