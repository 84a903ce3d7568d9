from typing import Any, Dict, Mapping

# Developer services feature id -> entitlement keys that require it.
# Only features a free or individual team can toggle on an App ID are listed.
FEATURE_MAPPING = {
    "APG3427HIY": ["com.apple.security.application-groups"],  # App Groups
    "gameCenter": ["com.apple.developer.game-center"],
    "IAD53UNK2F": ["inter-app-audio"],  # Inter-App Audio
    "push": ["aps-environment"],
    "iCloud": [
        "com.apple.developer.icloud-container-identifiers",
        "com.apple.developer.icloud-services",
        "com.apple.developer.ubiquity-container-identifiers",
        "com.apple.developer.ubiquity-kvstore-identifier",
    ],
}

ENTITLEMENT_TO_FEATURE = {
    entitlement: feature
    for feature, entitlements in FEATURE_MAPPING.items()
    for entitlement in entitlements
}


def features_for_entitlements(entitlements: Mapping[str, Any]) -> Dict[str, Any]:
    """Features to enable on an App ID so its profile can carry these entitlements"""
    features: Dict[str, Any] = {}
    for key in entitlements:
        if feature := ENTITLEMENT_TO_FEATURE.get(key):
            features[feature] = True
    return features
