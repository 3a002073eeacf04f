"""Header spellings and label tables recognised by the workbook importer.

Workbooks come from exports, hand-made sheets and older CRM dumps, so every
field accepts Polish and English headers in the casings seen in the wild.
Lookups try these in order, then retry case-insensitively.
"""

from crm.models import AccountPriority, AccountStatus, InteractionKind

FULL_NAME = (
    "Imię i nazwisko",
    "imię i nazwisko",
    "Imie i nazwisko",
    "Full Name",
    "full name",
    "fullName",
)
FIRST_NAME = ("Imię", "Imie", "IMIĘ", "First Name", "firstName", "firstname")
LAST_NAME = ("Nazwisko", "NAZWISKO", "Last Name", "lastName", "lastname", "Surname")
ORG_NAME = (
    "Nazwa agencji",
    "Nazwa Agencji",
    "Nazwa firmy",
    "Nazwa Firmy",
    "Agency Name",
    "agencyName",
    "Company Name",
    "companyName",
    "Organization",
    "Organisation",
    "Firma",
    "FIRMA",
    "Company",
    "COMPANY",
)
NIP = ("NIP", "nip", "Tax ID", "VAT ID", "taxId")
REGON = ("REGON", "regon")
PESEL = ("PESEL", "pesel")
EMAIL = (
    "Email agencji",
    "Email Agencji",
    "Email",
    "E-mail",
    "EMAIL",
    "E-MAIL",
    "Adres email",
    "Email Address",
)
PHONE = (
    "Telefon agencji",
    "Telefon Agencji",
    "Telefon",
    "TELEFON",
    "Tel",
    "Phone",
    "PHONE",
    "Phone Number",
    "Mobile",
)
WEBSITE = ("WWW", "Strona WWW", "Strona", "Website", "WEBSITE", "URL")
ADDRESS = ("Adres", "ADRES", "Address")
SOURCE = (
    "Źródło kontaktu",
    "Źródło Kontaktu",
    "Źródło pozyskania",
    "Źródło",
    "Zrodlo",
    "Source",
    "Lead Source",
)
STATUS = ("Status", "STATUS", "DUPLIKAT_W_RAPORCIE")
PRIORITY = ("Priorytet", "PRIORYTET", "Priority")
NEXT_FOLLOW_UP = ("Następny follow-up", "Nastepny follow-up", "Next Follow-up", "Next follow up", "Follow-up")

INTERACTION_IDENTIFIER = (
    "Klient Email",
    "Client Email",
    "Email klienta",
    "Identyfikator klienta",
)
INTERACTION_KIND = ("Typ kontaktu", "Type", "Typ", "Interaction Type", "Kind")
INTERACTION_DATE = ("Data", "Date", "Data kontaktu", "Contact Date")
INTERACTION_NOTES = ("Notatka", "Notatki", "Notes", "Note", "Opis", "Description")

# Header keys whose presence on the account sheet signals embedded interaction data.
INTERACTION_INDICATORS = (
    "Typ kontaktu",
    "Type",
    "Typ",
    "Notatka",
    "Notatki",
    "Notes",
    "Opis",
    "Description",
)

STATUS_LABELS = {
    "new lead": AccountStatus.NEW_LEAD,
    "nowy lead": AccountStatus.NEW_LEAD,
    "nowy": AccountStatus.NEW_LEAD,
    "in contact": AccountStatus.IN_CONTACT,
    "w kontakcie": AccountStatus.IN_CONTACT,
    "demo sent": AccountStatus.DEMO_SENT,
    "demo wysłane": AccountStatus.DEMO_SENT,
    "demo wyslane": AccountStatus.DEMO_SENT,
    "negotiation": AccountStatus.NEGOTIATION,
    "negocjacje": AccountStatus.NEGOTIATION,
    "active client": AccountStatus.ACTIVE_CLIENT,
    "klient aktywny": AccountStatus.ACTIVE_CLIENT,
    "aktywny": AccountStatus.ACTIVE_CLIENT,
    "lost": AccountStatus.LOST,
    "utracony": AccountStatus.LOST,
}

PRIORITY_LABELS = {
    "low": AccountPriority.LOW,
    "niski": AccountPriority.LOW,
    "medium": AccountPriority.MEDIUM,
    "średni": AccountPriority.MEDIUM,
    "sredni": AccountPriority.MEDIUM,
    "high": AccountPriority.HIGH,
    "wysoki": AccountPriority.HIGH,
}

INTERACTION_KIND_LABELS = {
    "phone call": InteractionKind.PHONE_CALL,
    "rozmowa telefoniczna": InteractionKind.PHONE_CALL,
    "telefon": InteractionKind.PHONE_CALL,
    "call": InteractionKind.PHONE_CALL,
    "meeting": InteractionKind.MEETING,
    "spotkanie": InteractionKind.MEETING,
    "email": InteractionKind.EMAIL,
    "e-mail": InteractionKind.EMAIL,
    "linkedin message": InteractionKind.LINKEDIN_MESSAGE,
    "wiadomość linkedin": InteractionKind.LINKEDIN_MESSAGE,
    "wiadomosc linkedin": InteractionKind.LINKEDIN_MESSAGE,
    "linkedin": InteractionKind.LINKEDIN_MESSAGE,
    "other": InteractionKind.OTHER,
    "inne": InteractionKind.OTHER,
}
