from mywellness_convert.main import main

if __name__ == "__main__":
    raise SystemExit(main())
