from copiepate import crypto
from copiepate.config import default_config_path

# Quick one-off secret generation for a fresh client/server pair.
# - 256-bit random secret, Base64, the same value goes on BOTH machines.
# - Nothing is written if a config file already exists (never clobber a key).

# 1) Generate the secret.
secret = crypto.generate_secret()

# 2) Write a starter config.toml if there isn't one yet.
config_path = default_config_path()
if not config_path.exists():
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(f'secret = "{secret}"\n', encoding="utf-8")
    config_path.chmod(0o600)  # the secret is the only thing protecting the clipboard
    print(f"Wrote {config_path}")
else:
    print(f"{config_path} already exists; add the secret by hand.")

# 3) Print the secret so it can be copied to the other machine's config.
print("Secret (base64):")
print(secret)
