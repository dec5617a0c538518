from storefront_auth.client.flows import Countdown, FlowError, FlowStep, PasswordResetFlow, SignupFlow, StepController

__all__ = [
    "Countdown",
    "FlowError",
    "FlowStep",
    "PasswordResetFlow",
    "SignupFlow",
    "StepController",
]
