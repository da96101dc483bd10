"""
loyalcard entry point.
"""
import os
import sys
import traceback

print("[loyalcard] ========================================")
print("[loyalcard] Starting loyalcard v0.1.0")
print("[loyalcard] ========================================")

config_name = os.getenv('FLASK_ENV', 'production')
print(f"[loyalcard] Config: {config_name}")
print(f"[loyalcard] PORT: {os.getenv('PORT', 'not set')}")
print(f"[loyalcard] DATABASE_URL: {'set' if os.getenv('DATABASE_URL') else 'NOT SET'}")
print(f"[loyalcard] REDIS_URL: {'set' if os.getenv('REDIS_URL') else 'NOT SET (per-process rate limits)'}")

try:
    from loyalcard import create_app
    app = create_app(config_name)
    print(f"[loyalcard] App created, {len(list(app.url_map.iter_rules()))} routes")
except Exception as e:
    print(f"[loyalcard] FATAL ERROR during app creation: {e}")
    traceback.print_exc()
    sys.exit(1)

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=os.getenv('FLASK_ENV') == 'development'
    )
