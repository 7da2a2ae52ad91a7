from . import doctor, request

ENTRY_PARSERS = [
    doctor,
    request,
]
