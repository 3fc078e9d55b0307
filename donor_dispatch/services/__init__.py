from donor_dispatch.services.compatibility import BloodGroup, can_donate, compatible_donor_groups
from donor_dispatch.services.eligibility import EligibilityFilter
from donor_dispatch.services.push import DispatchBatcher
from donor_dispatch.services.notification import NotificationRecorder
from donor_dispatch.services.registry import DonorRegistry

__all__ = [
    "BloodGroup", "can_donate", "compatible_donor_groups",
    "EligibilityFilter", "DispatchBatcher", "NotificationRecorder", "DonorRegistry",
]
