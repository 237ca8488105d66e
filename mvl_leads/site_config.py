"""
Property contact details and document metadata used in emails and payloads.
"""

CONTACT = {
    "email": "info@mtvernonlofts.com",
    "phone": "713.986.9929",
    "company_name": "Mount Vernon Lofts",
    "tagline": "Montrose ownership, finally within reach.",
    "location": "Montrose, Houston's Most Walkable Neighborhood",
    "address": "4509 Mount Vernon, Houston, TX 77006",
    "website": "https://mtvernonlofts.com",
    # Brochure and floor plans share one PDF
    "documents_pdf_url": "https://mount-vernon-lofts.s3.us-east-2.amazonaws.com/documents/mvl_brochure.pdf",
}

INTEREST_LABELS = {
    "all": "Complete Information Package",
    "floor_plans": "Floor Plans & Layouts",
    "amenities": "Amenities & Features",
    "pricing": "Pricing & Availability",
    "investment": "Investment Details",
}

INTEREST_DESCRIPTIONS = {
    "all": "Comprehensive interest - wants complete information",
    "floor_plans": "Focused on layouts and design",
    "amenities": "Interested in lifestyle and features",
    "pricing": "Serious buyer - pricing inquiry",
    "investment": "Investment potential focus",
}

TIMELINE_DESCRIPTIONS = {
    "immediate": "Ready to move immediately - HIGH PRIORITY",
    "3_months": "Looking to move within 3 months - HIGH PRIORITY",
    "6_months": "Planning to move within 6 months - MEDIUM PRIORITY",
    "1_year": "Timeline within 1 year - MEDIUM PRIORITY",
    "exploring": "Currently exploring options - NURTURE LEAD",
}


def timeline_description(timeframe):
    if not timeframe:
        return "Timeline not specified - follow up required"
    return TIMELINE_DESCRIPTIONS.get(timeframe, timeframe)


def brochure_lead_subject(name: str) -> str:
    return f"Brochure Request - {name}"


def brochure_delivery_subject(interest: str = "") -> str:
    return "Your Mount Vernon Lofts Brochure"


def floor_plans_lead_subject(name: str) -> str:
    return f"Floor Plans Request - {name}"


def floor_plans_delivery_subject(floor_plan: str) -> str:
    if floor_plan == "all_plans":
        return "Your Mount Vernon Lofts Floor Plans - Complete Collection"
    return f"Your Mount Vernon Lofts Floor Plans - {floor_plan}"


# Per-document wording for the brochure and floor plans request flows
DOCUMENTS = {
    "brochure": {
        "form_type": "brochure_request",
        "source": "mvl_brochure_page",
        "interest_field": "brochureInterest",
        "title": "Brochure",
        "request_label": "Brochure Request",
        "lead_header_value": "brochure-request",
        "delivery_header_value": "brochure",
        "lead_subject": brochure_lead_subject,
        "delivery_subject": brochure_delivery_subject,
        "source_label": "Mount Vernon Lofts Brochure Page",
        "included": [
            "Unit floor plans for studios and 1-bedrooms",
            "Unit specifications and square footage",
            "Building features and amenities overview",
            "Montrose neighborhood highlights",
            "Pricing and availability information",
        ],
        "success_message": "Brochure request processed successfully",
        "error_message": "Failed to process brochure request",
    },
    "floor_plans": {
        "form_type": "floor_plans_request",
        "source": "mvl_floor_plans_page",
        "interest_field": "floorPlansInterest",
        "title": "Floor Plans",
        "request_label": "Floor Plans Request",
        "lead_header_value": "floor-plans-request",
        "delivery_header_value": "floor-plans",
        "lead_subject": floor_plans_lead_subject,
        "delivery_subject": floor_plans_delivery_subject,
        "source_label": "Mount Vernon Lofts Floor Plans Page",
        "included": [
            "Detailed unit floor plans",
            "Square footage specifications",
            "Unit features and finishes",
            "Building amenities overview",
        ],
        "success_message": "Floor plans request processed successfully",
        "error_message": "Failed to process floor plans request",
    },
}


def interest_label(document: str, interest: str) -> str:
    if document == "floor_plans":
        return "All floor plans" if interest == "all_plans" else interest
    return INTEREST_LABELS.get(interest, interest)


def interest_description(document: str, interest: str) -> str:
    if document == "floor_plans":
        return "Exploring all options" if interest == "all_plans" else "Specific unit interest"
    return INTEREST_DESCRIPTIONS.get(interest, interest)
