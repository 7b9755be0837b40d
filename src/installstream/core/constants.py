"""Constants for the installation stream."""


# Progress keywords, matched as case-sensitive substrings in declaration order.
# First match wins; percentages increase with declaration order.
PROGRESS_INDICATORS: tuple[tuple[str, int], ...] = (
    ("Téléchargement", 20),
    ("Extraction réussie", 30),
    ("Installation des fichiers", 50),
    ("DÉBUT DU SCRIPT POST-INSTALLATION", 70),
    ("terminée avec succès", 100),
)

# ERROR-level phrases meaning the installation cannot go on
TERMINAL_ERROR_PHRASES: tuple[str, ...] = (
    "L'installation ne peut pas continuer",
    "Échec complet de l'installation",
    "Le fichier téléchargé est vide ou n'existe pas",
)

# SUCCESS-level phrases meaning the operation completed
SUCCESS_PHRASES: tuple[str, ...] = (
    "terminée avec succès",
    "Installation réussie",
)

# Progress bar colours
COLOR_NORMAL = "#007bff"
COLOR_ERROR = "#dc3545"

# Status sink vocabulary
STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"
STATUS_ERROR = "error"
STATUS_COMPLETE = "complete"
STATUS_WARNING = "warning"

# status -> (label, css class)
STATUS_DISPLAY = {
    STATUS_CONNECTED: ("Connecté", "status-connected"),
    STATUS_DISCONNECTED: ("Déconnecté", "status-disconnected"),
    STATUS_ERROR: ("Erreur", "status-error"),
    STATUS_COMPLETE: ("Terminé", "status-complete"),
    STATUS_WARNING: ("Avertissement", "status-warning"),
}

# Locally-originated notices
NOTICE_CONNECTING = "Connexion au flux de logs..."
NOTICE_CONNECTED = "Connexion au flux de logs établie"
NOTICE_TRANSPORT_ERROR = "Erreur de connexion au flux de logs"
NOTICE_IDLE_TIMEOUT = "Aucune activité sur le flux de logs, abandon de la session"
NOTICE_FINAL_SUCCESS = "Installation terminée avec succès"
NOTICE_FINAL_WARNING = "Installation terminée avec avertissements"
NOTICE_FINAL_FAILURE = "Installation terminée avec des erreurs"

# Operation id prefixes
MODE_INSTALL = "install"
MODE_UNINSTALL = "uninstall"
OPERATION_PREFIXES = (f"{MODE_INSTALL}-", f"{MODE_UNINSTALL}-")

# Package URLs pointing at the catalog's placeholder hosts are not installable
PLACEHOLDER_PACKAGE_MARKERS = (
    "avanteam-online.com/no-package",
    "avanteam-online.com/placeholder",
)

# Lines the installer prints that carry paths for the outcome report
DESTINATION_MARKER = "Chemin de destination complet:"
BACKUP_MARKER = "Sauvegarde créée dans:"

# Level tags the relay strips from producer messages
RELAY_LEVEL_PREFIXES = ("[INFO]", "[ERROR]", "[WARNING]", "[SUCCESS]", "[SCRIPT]")
